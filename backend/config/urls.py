"""
URL configuration for the donation tracker backend.

Route prefixes mirror the public REST interface consumed by the client app:
/donor, /program (also mounted at /api), /donatedItem, /donatedItem/status,
/passwordReset and /api/barcode.
"""
from django.contrib import admin
from django.urls import path, include, re_path
from django.conf import settings
from django.views.static import serve

admin.site.site_header = "Donation Tracker Admin Panel"
admin.site.site_title = "Donation Tracker Admin Portal"
admin.site.index_title = "Donations, donors and programs"

urlpatterns = [
    path('admin/', admin.site.urls),
    path('donor/', include('backend.donors.urls')),
    path('program/', include('backend.programs.urls')),
    path('api/barcode/', include('backend.labels.urls')),
    path('api/', include('backend.programs.urls')),
    path('passwordReset/', include('backend.core.urls')),
    path('donatedItem/status/', include('backend.donations.status_urls')),
    path('donatedItem/', include('backend.donations.urls')),
]

# Files written by the local storage backend are served at /uploads/<filename>
if settings.STORAGE_BACKEND == 'local':
    urlpatterns += [
        re_path(r'^uploads/(?P<path>.*)$', serve, {'document_root': settings.MEDIA_ROOT / settings.UPLOADS_DIR}),
    ]
