"""
Django admin configuration for core app.
"""
from django.contrib import admin


admin.site.site_header = "Back Office Administration"
admin.site.site_title = "Back Office Admin"
admin.site.index_title = "Companies, access control and handovers"
