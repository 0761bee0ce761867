"""
Main URL mapping configuration file.

The drive core has no HTTP views of its own; its operations are exposed
through server.apps.drive.logic.facade.DriveFacade.
"""

from django.contrib import admin
from django.urls import path

urlpatterns = [
    path('admin/', admin.site.urls),
]
