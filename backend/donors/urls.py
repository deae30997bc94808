from django.urls import path
from .views import (
    donor_list_create, donor_emails, register_donor,
    pending_users, user_list, user_update,
    donor_edit, donor_me,
)

urlpatterns = [
    path('', donor_list_create, name='donor-list-create'),
    path('emails/', donor_emails, name='donor-emails'),
    path('register/', register_donor, name='donor-register'),

    # Account approval
    path('pending/', pending_users, name='pending-users'),
    path('users/', user_list, name='user-list'),
    path('users/<int:user_id>/', user_update, name='user-update'),

    # Donor self-service
    path('edit/', donor_edit, name='donor-edit'),
    path('me/', donor_me, name='donor-me'),
]
