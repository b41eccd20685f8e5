from django.urls import path
from . import views

urlpatterns = [
    path('', views.create_booking, name='create_booking'),
    path('validate-field/', views.validate_booking_field, name='validate_booking_field'),
    path('<int:booking_id>/', views.get_booking, name='get_booking'),
    path('<int:booking_id>/retry-payment/', views.retry_payment, name='retry_payment'),
    path('<int:booking_id>/cancel/', views.cancel_booking, name='cancel_booking'),
    path('<int:booking_id>/refund/', views.refund_booking, name='refund_booking'),
    path('<int:booking_id>/payment-success/', views.payment_success, name='payment_success'),
    path('<int:booking_id>/payment-cancel/', views.payment_cancel, name='payment_cancel'),
]
