# uploads/admin.py
from django.contrib import admin
from .models import UploadSession, UploadPart


class UploadPartInline(admin.TabularInline):
    model = UploadPart
    extra = 0
    fields = ("chunk_index", "size", "created_at")
    readonly_fields = fields


@admin.register(UploadSession)
class UploadSessionAdmin(admin.ModelAdmin):
    list_display = ("id", "doctor", "total_chunks", "created_at", "updated_at")
    list_filter = ("created_at",)
    search_fields = ("id", "doctor__username")
    inlines = [UploadPartInline]
