from django.urls import path
from . import views

urlpatterns = [
    path('', views.list_services, name='list_services'),
    path('<int:service_id>/', views.get_service, name='get_service'),
]
