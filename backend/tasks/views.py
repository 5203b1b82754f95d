# views.py
from typing import Optional

from django.utils import timezone
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.identity import Identity, resolve_identity
from accounts.models import User

from .board import TaskBoard
from .exceptions import StatusNotPermitted
from .serializers import StatusChangeSerializer, TaskFilterSerializer, TaskRowSerializer

SCOPE_LABELS = {
    User.Role.ADMIN.value: "All tasks in the system",
    User.Role.LEADER.value: "Tasks in your department",
    User.Role.EMPLOYEE.value: "Tasks assigned to you",
}


def scope_label(role: Optional[str]) -> str:
    return SCOPE_LABELS.get(role, "")


def serialize_rows(rows, identity: Identity, many: bool = True):
    context = {"identity": identity, "now": timezone.localtime()}
    return TaskRowSerializer(rows, many=many, context=context).data


class TaskList(APIView):
    """
    GET /api/tasks/?status=&priority=&overdue=&sort=asc|desc
    Returns the caller's visible tasks, filtered, ordered by due date with
    completed tasks last.
    """

    def get(self, request):
        params = TaskFilterSerializer(data=request.query_params)
        params.is_valid(raise_exception=True)
        options = params.validated_data

        identity = resolve_identity(request.user.pk)
        board = TaskBoard(identity, sort_order=options["sort"])
        board.set_filters(status=options["status"], priority=options["priority"], overdue=options["overdue"])
        board.load()
        rows = board.visible()

        payload = {
            "role": identity.role,
            "scope": scope_label(identity.role),
            "sort": board.sort_order,
            "filters": board.filters,
            "total": len(board.tasks),
            "count": len(rows),
            "tasks": serialize_rows(rows, identity),
        }
        if board.error:
            # degrade to "nothing new" instead of failing the page
            payload["error"] = board.error
        return Response(payload, status=status.HTTP_200_OK)


class TaskDetail(APIView):
    """
    GET /api/tasks/<id>/
    Returns one visible task row, or 404 when the caller cannot see it.
    """

    def get(self, request, pk: int):
        identity = resolve_identity(request.user.pk)
        board = TaskBoard(identity)
        row = board.load_one(pk)
        if board.error:
            return Response({"error": board.error}, status=status.HTTP_502_BAD_GATEWAY)
        if row is None:
            return Response({"error": "Task not found"}, status=status.HTTP_404_NOT_FOUND)
        return Response(serialize_rows(row, identity, many=False), status=status.HTTP_200_OK)


class TaskStatus(APIView):
    """
    POST /api/tasks/<id>/status/
    Body: {"status": "pending" | "in_progress" | "completed" | "cancelled"}
    Returns the patched row and whether anything changed.
    """

    def post(self, request, pk: int):
        serializer = StatusChangeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        new_status = serializer.validated_data["status"]

        identity = resolve_identity(request.user.pk)
        board = TaskBoard(identity)
        if board.load_one(pk) is None:
            if board.error:
                return Response({"error": board.error}, status=status.HTTP_502_BAD_GATEWAY)
            return Response({"error": "Task not found"}, status=status.HTTP_404_NOT_FOUND)

        try:
            changed = board.change_status(pk, new_status)
        except StatusNotPermitted as exc:
            return Response(exc.to_dict(), status=status.HTTP_403_FORBIDDEN)

        if board.error:
            return Response({"error": board.error}, status=status.HTTP_502_BAD_GATEWAY)

        return Response({"task": serialize_rows(board.find(pk), identity, many=False), "changed": changed},
                        status=status.HTTP_200_OK)
