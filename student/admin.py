from django.contrib import admin
from student.models import StudentModel, ParentModel


@admin.register(StudentModel)
class StudentAdmin(admin.ModelAdmin):
    list_display = ('student_id', 'first_name', 'last_name', 'school', 'amount_due', 'tuition_status')
    list_filter = ('tuition_status', 'school')
    search_fields = ('student_id', 'first_name', 'last_name')
    readonly_fields = ('tuition_status',)


admin.site.register(ParentModel)
