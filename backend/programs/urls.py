from django.urls import path
from backend.core.views import register_admin, login
from .views import program_list_create, program_edit

urlpatterns = [
    path('', program_list_create, name='program-list-create'),
    path('edit/', program_edit, name='program-edit'),

    # Auth endpoints
    path('register/', register_admin, name='register'),
    path('login/', login, name='login'),
]
