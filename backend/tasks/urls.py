from django.urls import path

from .views import TaskDetail, TaskList, TaskStatus

urlpatterns = [
    path("tasks/", TaskList.as_view(), name="task-list"),
    path("tasks/<int:pk>/", TaskDetail.as_view(), name="task-detail"),
    path("tasks/<int:pk>/status/", TaskStatus.as_view(), name="task-status"),
]
