"""
Contact URL Configuration
"""
from django.urls import path
from .views import ContactFormSubmitView

app_name = 'contact'

urlpatterns = [
    path('', ContactFormSubmitView.as_view(), name='submit'),
    path('submit', ContactFormSubmitView.as_view(), name='submit-alias'),
]
