from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.contrib.auth.models import User

from .models import ConsultationSession, DoctorPresence, QueueEntry, RoomParticipant, UserProfile, VideoRoom

# =============================================================================
# 1. USER PROFILE EXTENSION
# =============================================================================

class UserProfileInline(admin.StackedInline):
    """Edit the role directly inside the standard Django User admin page."""
    model = UserProfile
    can_delete = False
    verbose_name_plural = "User Profile"
    fk_name = "user"


class UserAdmin(BaseUserAdmin):
    inlines = (UserProfileInline,)
    list_display = ("username", "email", "first_name", "last_name", "get_role", "is_staff")

    def get_role(self, obj):
        return obj.profile.role if hasattr(obj, "profile") else "-"
    get_role.short_description = "Role"


admin.site.unregister(User)
admin.site.register(User, UserAdmin)


# =============================================================================
# 2. CONSULTATIONS & QUEUE
# =============================================================================

@admin.register(ConsultationSession)
class ConsultationSessionAdmin(admin.ModelAdmin):
    list_display = ("consultation_id", "doctor_id", "patient_id", "status", "room_name", "start_time", "end_time")
    list_filter = ("status",)
    search_fields = ("consultation_id", "room_name")
    readonly_fields = ("consultation_id", "start_time", "updated_at")
    date_hierarchy = "start_time"


@admin.register(QueueEntry)
class QueueEntryAdmin(admin.ModelAdmin):
    list_display = ("id", "doctor_id", "patient_id", "status", "room_name", "joined_at", "left_at")
    list_filter = ("status",)


@admin.register(DoctorPresence)
class DoctorPresenceAdmin(admin.ModelAdmin):
    list_display = ("doctor_id", "is_available", "updated_at")
    list_filter = ("is_available",)


# =============================================================================
# 3. VIDEO ROOMS
# =============================================================================

class RoomParticipantInline(admin.TabularInline):
    model = RoomParticipant
    extra = 0
    readonly_fields = ("sid", "identity", "status", "date_created")


@admin.register(VideoRoom)
class VideoRoomAdmin(admin.ModelAdmin):
    list_display = ("unique_name", "sid", "status", "date_created")
    list_filter = ("status",)
    search_fields = ("unique_name", "sid")
    inlines = (RoomParticipantInline,)
