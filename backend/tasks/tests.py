from datetime import date, datetime
from unittest import mock

from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from accounts.identity import Identity, resolve_identity
from accounts.models import Department, User

from .board import TaskBoard
from .exceptions import StatusNotPermitted, StatusUpdateError, TaskLoadError
from .filtering import filter_tasks, is_overdue
from .loader import UNKNOWN_USER, load_task, load_tasks, visible_tasks
from .models import Task
from .permissions import allowed_statuses
from .services import change_status


class TaskFixtures(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.eng = Department.objects.create(name="Engineering")
        cls.ops = Department.objects.create(name="Operations")

        cls.admin = User.objects.create_user("admin", password="secret123", role="admin", full_name="Ada Admin")
        cls.leader = User.objects.create_user("lead", password="secret123", role="leader", department=cls.eng,
                                              full_name="Lee Leader")
        cls.orphan_leader = User.objects.create_user("orphan", password="secret123", role="leader")
        cls.alice = User.objects.create_user("alice", password="secret123", role="employee", department=cls.eng,
                                             full_name="Alice Worker", email="alice@example.com")
        cls.bob = User.objects.create_user("bob", password="secret123", role="employee", department=cls.ops,
                                           full_name="Bob Worker", email="bob@example.com")

        cls.design = cls.make_task("Design review", date(2024, 1, 5), cls.alice, cls.eng,
                                   priority="high", status="pending")
        cls.ci_setup = cls.make_task("Set up CI", date(2024, 1, 1), cls.alice, cls.eng,
                                  priority="low", status="completed")
        cls.audit = cls.make_task("Stock audit", date(2024, 1, 10), cls.bob, cls.ops,
                                  priority="critical", status="in_progress")

    @classmethod
    def make_task(cls, title, due_date, assignee, department, **fields):
        return Task.objects.create(
            title=title,
            due_date=due_date,
            assignee=assignee,
            department=department,
            assigned_by=cls.admin,
            assigned_by_name="Ada Admin",
            **fields,
        )

    def identity(self, user):
        return resolve_identity(user.pk)


class VisibilityTests(TaskFixtures):
    def ids(self, user):
        return set(visible_tasks(self.identity(user)).values_list("id", flat=True))

    def test_admin_sees_every_task(self):
        self.assertEqual(self.ids(self.admin), {self.design.pk, self.ci_setup.pk, self.audit.pk})

    def test_leader_sees_only_own_department(self):
        self.assertEqual(self.ids(self.leader), {self.design.pk, self.ci_setup.pk})
        for row in load_tasks(self.identity(self.leader)):
            self.assertEqual(row["department_id"], self.eng.pk)

    def test_leader_without_department_sees_nothing(self):
        self.assertEqual(self.ids(self.orphan_leader), set())

    def test_employee_sees_only_assigned_tasks(self):
        self.assertEqual(self.ids(self.bob), {self.audit.pk})

    def test_unrecognized_role_sees_nothing(self):
        User.objects.filter(pk=self.bob.pk).update(role="contractor")
        with self.assertLogs("tasks.loader", level="WARNING"):
            self.assertEqual(self.ids(self.bob), set())

    def test_unresolved_identity_sees_nothing(self):
        with self.assertLogs("tasks.loader", level="WARNING"):
            self.assertFalse(visible_tasks(Identity(user_id=self.alice.pk)).exists())


class LoaderTests(TaskFixtures):
    def test_orders_by_due_date_in_both_directions(self):
        admin = self.identity(self.admin)
        asc = [row["due_date"] for row in load_tasks(admin, "asc")]
        desc = [row["due_date"] for row in load_tasks(admin, "desc")]
        self.assertEqual(asc, [date(2024, 1, 1), date(2024, 1, 5), date(2024, 1, 10)])
        self.assertEqual(desc, list(reversed(asc)))

    def test_rows_are_enriched_with_assignee_and_department(self):
        row = load_task(self.identity(self.admin), self.audit.pk)
        self.assertEqual(row["assignee_name"], "Bob Worker")
        self.assertEqual(row["assignee_email"], "bob@example.com")
        self.assertEqual(row["department_name"], "Operations")
        self.assertEqual(row["assigned_by"], self.admin.pk)

    def test_missing_assignee_falls_back_to_unknown_user(self):
        orphan = Task.objects.create(title="Ghost", due_date=date(2024, 2, 1), assignee_id=987654,
                                     department=self.eng)
        row = load_task(self.identity(self.admin), orphan.pk)
        self.assertEqual(row["assignee_name"], UNKNOWN_USER)
        self.assertEqual(row["assignee_email"], "")

    def test_enrichment_is_batched(self):
        admin = self.identity(self.admin)
        # task query + one users lookup + one departments lookup
        with self.assertNumQueries(3):
            load_tasks(admin)

    def test_invisible_task_is_none(self):
        self.assertIsNone(load_task(self.identity(self.bob), self.design.pk))

    def test_query_error_raises_load_error(self):
        with mock.patch("tasks.loader.visible_tasks", side_effect=DatabaseError("down")):
            with self.assertRaises(TaskLoadError):
                load_tasks(self.identity(self.admin))

    def test_invalid_sort_order(self):
        with self.assertRaises(ValueError):
            load_tasks(self.identity(self.admin), "sideways")


NOW = timezone.make_aware(datetime(2024, 1, 10, 15, 0))


def row(task_id, due_date, status, priority):
    return {"id": task_id, "due_date": due_date, "status": status, "priority": priority}


ROWS = [
    row(1, date(2024, 1, 5), "Pending", "High"),
    row(2, date(2024, 1, 10), None, "low"),
    row(3, date(2024, 1, 1), "completed", "high"),
    row(4, date(2024, 1, 12), "in_progress", "critical"),
    row(5, date(2024, 1, 2), "COMPLETED", "medium"),
]


def ids(rows):
    return [r["id"] for r in rows]


class OverdueTests(SimpleTestCase):
    def test_earlier_day_is_overdue(self):
        self.assertTrue(is_overdue(date(2024, 1, 9), NOW))
        self.assertTrue(is_overdue("2024-01-09", NOW))

    def test_due_today_is_never_overdue(self):
        self.assertFalse(is_overdue(date(2024, 1, 10), NOW))
        self.assertFalse(is_overdue(timezone.make_aware(datetime(2024, 1, 10, 8, 0)), NOW))
        self.assertFalse(is_overdue("2024-01-10T08:00:00Z", NOW))
        self.assertFalse(is_overdue(timezone.localdate()))

    def test_future_is_not_overdue(self):
        self.assertFalse(is_overdue(date(2024, 1, 11), NOW))

    def test_invalid_due_date(self):
        with self.assertRaises(ValueError):
            is_overdue("not a date", NOW)


class FilterTests(SimpleTestCase):
    def test_status_filter_ignores_case_and_defaults_to_pending(self):
        self.assertEqual(ids(filter_tasks(ROWS, status="pending", now=NOW)), [1, 2])
        self.assertEqual(ids(filter_tasks(ROWS, status="completed", now=NOW)), [3, 5])

    def test_priority_filter_ignores_case(self):
        self.assertEqual(ids(filter_tasks(ROWS, priority="high", now=NOW)), [1, 3])

    def test_overdue_filters(self):
        self.assertEqual(ids(filter_tasks(ROWS, overdue="overdue", now=NOW)), [1, 3, 5])
        self.assertEqual(ids(filter_tasks(ROWS, overdue="not_overdue", now=NOW)), [2, 4])

    def test_completed_tasks_move_last_keeping_order(self):
        self.assertEqual(ids(filter_tasks(ROWS, now=NOW)), [1, 2, 4, 3, 5])
        self.assertEqual(ids(filter_tasks(list(reversed(ROWS)), now=NOW)), [4, 2, 1, 5, 3])

    def test_filters_compose_in_any_order(self):
        combined = ids(filter_tasks(ROWS, priority="high", overdue="overdue", now=NOW))
        one_way = filter_tasks(filter_tasks(ROWS, priority="high", now=NOW), overdue="overdue", now=NOW)
        other_way = filter_tasks(filter_tasks(ROWS, overdue="overdue", now=NOW), priority="high", now=NOW)
        self.assertEqual(combined, [1, 3])
        self.assertEqual(ids(one_way), combined)
        self.assertEqual(ids(other_way), combined)

    def test_filtering_is_idempotent(self):
        options = {"status": "completed", "priority": "all", "overdue": "overdue", "now": NOW}
        once = filter_tasks(ROWS, **options)
        self.assertEqual(filter_tasks(once, **options), once)

    def test_input_is_not_modified(self):
        before = list(ROWS)
        filter_tasks(ROWS, status="pending", now=NOW)
        self.assertEqual(ROWS, before)

    def test_unknown_filter_value(self):
        with self.assertRaises(ValueError):
            filter_tasks(ROWS, status="archived")
        with self.assertRaises(ValueError):
            filter_tasks(ROWS, overdue="soon")


class PermissionTests(SimpleTestCase):
    task = {"id": 1, "assignee_id": 7, "status": "pending"}

    def test_admin_and_leader_may_set_any_status(self):
        everything = ["pending", "in_progress", "completed", "cancelled"]
        self.assertEqual(allowed_statuses(Identity(1, "admin"), self.task), everything)
        self.assertEqual(allowed_statuses(Identity(2, "leader", 3), self.task), everything)

    def test_assignee_may_only_start_or_park(self):
        self.assertEqual(allowed_statuses(Identity(7, "employee"), self.task), ["pending", "in_progress"])

    def test_other_employee_is_read_only(self):
        self.assertEqual(allowed_statuses(Identity(8, "employee"), self.task), [])

    def test_unresolved_identity_is_read_only(self):
        self.assertEqual(allowed_statuses(Identity(7), self.task), [])


class ChangeStatusTests(TaskFixtures):
    def test_same_status_issues_no_update(self):
        admin = self.identity(self.admin)
        with self.assertNumQueries(0):
            self.assertIsNone(change_status(admin, self.design, "pending"))

    def test_missing_status_counts_as_pending(self):
        Task.objects.filter(pk=self.design.pk).update(status=None)
        self.design.refresh_from_db()
        admin = self.identity(self.admin)
        with self.assertNumQueries(0):
            self.assertIsNone(change_status(admin, self.design, "PENDING"))

    def test_update_writes_status_and_timestamp(self):
        result = change_status(self.identity(self.leader), load_task(self.identity(self.leader), self.design.pk),
                               "completed")
        self.design.refresh_from_db()
        self.assertEqual(self.design.status, "completed")
        self.assertEqual(self.design.updated_at, result["updated_at"])

    def test_assignee_cannot_complete_own_task(self):
        with self.assertRaises(StatusNotPermitted):
            change_status(self.identity(self.alice), self.design, "completed")
        self.design.refresh_from_db()
        self.assertEqual(self.design.status, "pending")

    def test_employee_cannot_touch_someone_elses_task(self):
        with self.assertRaises(StatusNotPermitted) as ctx:
            change_status(self.identity(self.alice), self.audit, "pending")
        self.assertEqual(ctx.exception.details["allowed"], [])

    def test_store_error_raises_update_error(self):
        with mock.patch.object(Task.objects, "filter", side_effect=DatabaseError("down")):
            with self.assertLogs("tasks.services", level="ERROR"):
                with self.assertRaises(StatusUpdateError):
                    change_status(self.identity(self.admin), self.design, "cancelled")
        self.design.refresh_from_db()
        self.assertEqual(self.design.status, "pending")

    def test_vanished_task_raises_update_error(self):
        ghost = {"id": 424242, "assignee_id": self.alice.pk, "status": "pending"}
        with self.assertLogs("tasks.services", level="ERROR"):
            with self.assertRaises(StatusUpdateError):
                change_status(self.identity(self.admin), ghost, "completed")


class TaskBoardTests(SimpleTestCase):
    admin = Identity(1, "admin")

    def rows(self):
        return [
            {"id": 1, "status": "pending", "due_date": date(2024, 1, 5), "priority": "high", "assignee_id": 9},
            {"id": 2, "status": "in_progress", "due_date": date(2024, 1, 1), "priority": "low", "assignee_id": 9},
        ]

    def test_stale_load_is_dropped(self):
        board = TaskBoard(self.admin, loader=mock.Mock())
        older = board.begin_load()
        newer = board.begin_load()
        self.assertTrue(board.finish_load(newer, [{"id": 2}]))
        self.assertFalse(board.finish_load(older, [{"id": 1}]))
        self.assertEqual(board.tasks, [{"id": 2}])
        self.assertFalse(board.loading)

    def test_failed_load_keeps_previous_tasks(self):
        rows = self.rows()
        loader = mock.Mock(side_effect=[rows, TaskLoadError("down")])
        board = TaskBoard(self.admin, loader=loader)
        self.assertTrue(board.load())
        self.assertFalse(board.load())
        self.assertEqual(board.tasks, rows)
        self.assertFalse(board.loading)
        self.assertEqual(board.error, "down")

    def test_unresolved_identity_does_not_load(self):
        loader = mock.Mock()
        board = TaskBoard(Identity(5), loader=loader)
        self.assertFalse(board.load())
        loader.assert_not_called()

    def test_load_passes_sort_order(self):
        loader = mock.Mock(return_value=[])
        board = TaskBoard(self.admin, loader=loader)
        board.toggle_sort_order()
        board.load()
        loader.assert_called_once_with(self.admin, "asc")

    def test_visible_applies_filters(self):
        board = TaskBoard(self.admin, loader=mock.Mock(return_value=self.rows()))
        board.load()
        board.set_filters(status="in_progress")
        self.assertEqual(ids(board.visible(now=NOW)), [2])
        with self.assertRaises(ValueError):
            board.set_filters(colour="red")

    def test_successful_change_patches_only_that_row(self):
        stamp = timezone.now()
        updater = mock.Mock(return_value={"status": "completed", "updated_at": stamp})
        board = TaskBoard(self.admin, loader=mock.Mock(return_value=self.rows()), updater=updater)
        board.load()
        untouched = board.find(2)

        self.assertTrue(board.change_status(1, "completed"))
        self.assertEqual(board.find(1)["status"], "completed")
        self.assertEqual(board.find(1)["updated_at"], stamp)
        self.assertIs(board.find(2), untouched)
        self.assertFalse(board.is_updating(1))

    def test_failed_change_leaves_row_unchanged(self):
        updater = mock.Mock(side_effect=StatusUpdateError("rejected"))
        board = TaskBoard(self.admin, loader=mock.Mock(return_value=self.rows()), updater=updater)
        board.load()
        before = dict(board.find(1))

        self.assertFalse(board.change_status(1, "cancelled"))
        self.assertEqual(board.find(1), before)
        self.assertEqual(board.error, "rejected")
        self.assertFalse(board.is_updating(1))

    def test_row_with_update_in_flight_is_refused(self):
        updater = mock.Mock(return_value={"status": "completed", "updated_at": timezone.now()})
        board = TaskBoard(self.admin, loader=mock.Mock(return_value=self.rows()), updater=updater)
        board.load()
        board.updating_task_ids.add(1)

        self.assertFalse(board.change_status(1, "completed"))
        updater.assert_not_called()
        self.assertTrue(board.change_status(2, "completed"))

    def test_no_op_change_reports_unchanged(self):
        board = TaskBoard(self.admin, loader=mock.Mock(return_value=self.rows()),
                          updater=mock.Mock(return_value=None))
        board.load()
        self.assertFalse(board.change_status(1, "pending"))

    def test_permission_error_propagates(self):
        updater = mock.Mock(side_effect=StatusNotPermitted(1, "completed", []))
        board = TaskBoard(self.admin, loader=mock.Mock(return_value=self.rows()), updater=updater)
        board.load()
        with self.assertRaises(StatusNotPermitted):
            board.change_status(1, "completed")
        self.assertFalse(board.is_updating(1))

    def test_unknown_row(self):
        board = TaskBoard(self.admin, loader=mock.Mock(return_value=[]))
        board.load()
        with self.assertRaises(KeyError):
            board.change_status(99, "pending")


class TaskApiTests(TaskFixtures):
    def setUp(self):
        self.client = APIClient()

    def login(self, user):
        self.client.force_authenticate(user=user)

    def test_requires_authentication(self):
        response = self.client.get("/api/tasks/")
        self.assertIn(response.status_code, (401, 403))

    def test_leader_lists_department_tasks(self):
        self.login(self.leader)
        response = self.client.get("/api/tasks/")
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["scope"], "Tasks in your department")
        self.assertEqual([t["id"] for t in data["tasks"]], [self.design.pk, self.ci_setup.pk])
        self.assertEqual(data["tasks"][0]["assignee_name"], "Alice Worker")
        self.assertEqual(data["tasks"][0]["allowed_statuses"], ["pending", "in_progress", "completed", "cancelled"])
        self.assertTrue(data["tasks"][0]["is_overdue"])

    def test_admin_ascending_sort_keeps_completed_last(self):
        self.login(self.admin)
        data = self.client.get("/api/tasks/", {"sort": "asc"}).json()
        self.assertEqual([t["id"] for t in data["tasks"]], [self.design.pk, self.audit.pk, self.ci_setup.pk])
        self.assertEqual(data["total"], 3)

    def test_completed_row_is_not_flagged_overdue(self):
        self.login(self.admin)
        data = self.client.get("/api/tasks/", {"status": "completed"}).json()
        self.assertEqual([t["id"] for t in data["tasks"]], [self.ci_setup.pk])
        self.assertFalse(data["tasks"][0]["is_overdue"])
        data = self.client.get("/api/tasks/", {"status": "completed", "overdue": "overdue"}).json()
        self.assertEqual([t["id"] for t in data["tasks"]], [self.ci_setup.pk])

    def test_employee_filters_own_tasks(self):
        self.login(self.alice)
        data = self.client.get("/api/tasks/", {"status": "pending", "priority": "HIGH"}).json()
        self.assertEqual([t["id"] for t in data["tasks"]], [self.design.pk])
        self.assertEqual(data["tasks"][0]["allowed_statuses"], ["pending", "in_progress"])

    def test_invalid_filter_is_rejected(self):
        self.login(self.admin)
        response = self.client.get("/api/tasks/", {"overdue": "soon"})
        self.assertEqual(response.status_code, 400)

    def test_load_failure_degrades_to_empty_list(self):
        self.login(self.admin)
        with mock.patch("tasks.loader.visible_tasks", side_effect=DatabaseError("down")):
            with self.assertLogs("tasks.board", level="ERROR"):
                response = self.client.get("/api/tasks/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["tasks"], [])
        self.assertIn("error", response.json())

    def test_detail_respects_visibility(self):
        self.login(self.bob)
        self.assertEqual(self.client.get(f"/api/tasks/{self.audit.pk}/").status_code, 200)
        self.assertEqual(self.client.get(f"/api/tasks/{self.design.pk}/").status_code, 404)

    def test_assignee_starts_own_task(self):
        self.login(self.alice)
        url = f"/api/tasks/{self.design.pk}/status/"
        response = self.client.post(url, {"status": "in_progress"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["changed"])
        self.assertEqual(response.json()["task"]["status"], "in_progress")
        self.design.refresh_from_db()
        self.assertEqual(self.design.status, "in_progress")
        self.assertIsNotNone(self.design.updated_at)

        again = self.client.post(url, {"status": "in_progress"}, format="json")
        self.assertEqual(again.status_code, 200)
        self.assertFalse(again.json()["changed"])

    def test_assignee_cannot_complete(self):
        self.login(self.alice)
        response = self.client.post(f"/api/tasks/{self.design.pk}/status/", {"status": "completed"}, format="json")
        self.assertEqual(response.status_code, 403)
        self.design.refresh_from_db()
        self.assertEqual(self.design.status, "pending")

    def test_invisible_task_status_is_not_found(self):
        self.login(self.leader)
        response = self.client.post(f"/api/tasks/{self.audit.pk}/status/", {"status": "completed"}, format="json")
        self.assertEqual(response.status_code, 404)

    def test_unknown_status_value(self):
        self.login(self.admin)
        response = self.client.post(f"/api/tasks/{self.design.pk}/status/", {"status": "archived"}, format="json")
        self.assertEqual(response.status_code, 400)

    def test_store_failure_on_update(self):
        self.login(self.admin)
        with mock.patch("tasks.services.Task.objects.filter", side_effect=DatabaseError("down")):
            with self.assertLogs("tasks", level="ERROR"):
                response = self.client.post(f"/api/tasks/{self.design.pk}/status/", {"status": "cancelled"},
                                            format="json")
        self.assertEqual(response.status_code, 502)
