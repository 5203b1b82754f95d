from rest_framework import serializers

from .filtering import ALL, OVERDUE_FILTERS, PRIORITY_FILTERS, STATUS_FILTERS, is_overdue, task_status
from .loader import SORT_DESC, SORT_ORDERS
from .models import Task
from .permissions import allowed_statuses


class TaskFilterSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=STATUS_FILTERS, default=ALL)
    priority = serializers.ChoiceField(choices=PRIORITY_FILTERS, default=ALL)
    overdue = serializers.ChoiceField(choices=OVERDUE_FILTERS, default=ALL)
    sort = serializers.ChoiceField(choices=SORT_ORDERS, default=SORT_DESC)

    def to_internal_value(self, data):
        # filter values are compared lower-case
        data = {key: value.lower() if isinstance(value, str) else value for key, value in data.items()}
        return super().to_internal_value(data)


class StatusChangeSerializer(serializers.Serializer):
    status = serializers.CharField()

    def validate_status(self, value: str):
        value = value.strip().lower()
        if value not in Task.Status.values:
            raise serializers.ValidationError(f'"{value}" is not a valid status')
        return value


class TaskRowSerializer(serializers.Serializer):
    """Read-only shape of one dashboard row.

    Expects ``identity`` (and optionally ``now``) in the serializer context.
    """

    id = serializers.IntegerField()
    title = serializers.CharField()
    description = serializers.CharField(allow_blank=True)
    due_date = serializers.DateField()
    priority = serializers.CharField()
    status = serializers.SerializerMethodField()
    assignee_id = serializers.IntegerField()
    assignee_name = serializers.CharField()
    assignee_email = serializers.CharField(allow_blank=True)
    assigned_by = serializers.IntegerField(allow_null=True)
    assigned_by_name = serializers.CharField(allow_null=True)
    assigned_at = serializers.DateTimeField(allow_null=True)
    department_id = serializers.IntegerField()
    department_name = serializers.CharField(allow_blank=True)
    created_at = serializers.DateTimeField()
    updated_at = serializers.DateTimeField(allow_null=True)
    is_overdue = serializers.SerializerMethodField()
    allowed_statuses = serializers.SerializerMethodField()

    def get_status(self, row) -> str:
        return task_status(row)

    def get_is_overdue(self, row) -> bool:
        # completed work is never flagged, however late it was
        if task_status(row) == Task.Status.COMPLETED:
            return False
        return is_overdue(row["due_date"], self.context.get("now"))

    def get_allowed_statuses(self, row):
        return allowed_statuses(self.context["identity"], row)
