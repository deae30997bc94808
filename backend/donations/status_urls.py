from django.urls import path
from .status_views import donated_item_status

urlpatterns = [
    path('<int:item_id>/', donated_item_status, name='donated-item-status'),
]
