from django.urls import path
from . import views

urlpatterns = [
    path('webhook/stripe/', views.stripe_webhook, name='stripe_webhook'),
    path('webhook/razorpay/', views.razorpay_webhook, name='razorpay_webhook'),
    path('razorpay/verify/', views.razorpay_verify, name='razorpay_verify'),
]
