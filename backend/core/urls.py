from django.urls import path
from .views import forgot_password, reset_password

urlpatterns = [
    path('forgotpassword/', forgot_password, name='forgot-password'),
    path('resetpassword/', reset_password, name='reset-password'),
]
