from .billing import Usage
from .models import SchoolModel, CycleModel


class DjangoUsageProvider:
    """Read-only usage snapshot of a school, fed to the billing calculator."""

    def current_usage(self, school_id):
        school = SchoolModel.objects.filter(school_id=school_id).first()
        if school is None:
            return Usage()
        return Usage(
            cycles_count=CycleModel.objects.filter(school=school).count(),
            students_count=school.number_of_students(),
            storage_used_gb=school.storage_used_gb,
        )
