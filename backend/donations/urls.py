from django.urls import path
from .views import (
    donated_item_list_create, donated_item_detail, donated_item_update_details,
    donated_item_tags, donated_item_reanalyze,
)

urlpatterns = [
    path('', donated_item_list_create, name='donated-item-list-create'),
    path('details/<str:item_id>/', donated_item_update_details, name='donated-item-update-details'),

    # AI tagging
    path('<str:item_id>/tags/', donated_item_tags, name='donated-item-tags'),
    path('<str:item_id>/reanalyze/', donated_item_reanalyze, name='donated-item-reanalyze'),

    path('<str:item_id>/', donated_item_detail, name='donated-item-detail'),
]
