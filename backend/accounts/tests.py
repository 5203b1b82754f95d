from unittest import mock

from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase
from rest_framework.test import APIClient

from .forms import AUTO_CLOSE_DELAY, FAILED_MESSAGE, NETWORK_ERROR_MESSAGE, PasswordUpdateForm, validate_password_change
from .identity import resolve_identity
from .models import Department, User


class ResolveIdentityTests(TestCase):
    def test_reads_role_and_department(self):
        dept = Department.objects.create(name="Engineering")
        user = User.objects.create_user("lead", password="secret123", role="leader", department=dept)
        identity = resolve_identity(user.pk)
        self.assertEqual(identity.role, "leader")
        self.assertEqual(identity.department_id, dept.pk)
        self.assertTrue(identity.is_resolved)

    def test_missing_user_leaves_role_unset(self):
        with self.assertLogs("accounts.identity", level="ERROR"):
            identity = resolve_identity(31337)
        self.assertIsNone(identity.role)
        self.assertIsNone(identity.department_id)
        self.assertFalse(identity.is_resolved)

    def test_database_error_leaves_role_unset(self):
        with mock.patch.object(User.objects, "values", side_effect=DatabaseError("down")):
            with self.assertLogs("accounts.identity", level="ERROR"):
                identity = resolve_identity(1)
        self.assertIsNone(identity.role)


class ValidatePasswordChangeTests(SimpleTestCase):
    def test_checks_run_in_order(self):
        self.assertEqual(validate_password_change("", ""), "Current password is required")
        self.assertEqual(validate_password_change("old-pass", ""), "New password is required")
        self.assertEqual(validate_password_change("old-pass", "abc"),
                         "New password must be at least 6 characters long")
        self.assertEqual(validate_password_change("old-pass", "abcdef", "abcdeg"), "New passwords do not match")
        self.assertEqual(validate_password_change("abcdef", "abcdef", "abcdef"),
                         "New password must be different from current password")

    def test_valid_change(self):
        self.assertIsNone(validate_password_change("old-pass", "new-pass", "new-pass"))
        self.assertIsNone(validate_password_change("old-pass", "new-pass"))


class PasswordUpdateFormTests(SimpleTestCase):
    def filled(self):
        form = PasswordUpdateForm(user_id=4)
        form.update(current_password="old-pass", new_password="new-pass", confirm_password="new-pass")
        return form

    def test_invalid_form_is_not_posted(self):
        form = PasswordUpdateForm(user_id=4)
        form.update(current_password="old-pass", new_password="new-pass", confirm_password="other")
        post = mock.Mock()
        self.assertFalse(form.submit(post))
        self.assertEqual(form.error, "New passwords do not match")
        post.assert_not_called()

    def test_success_clears_fields(self):
        form = self.filled()
        post = mock.Mock(return_value=(True, {"success": True}))
        self.assertTrue(form.submit(post))
        post.assert_called_once_with({"userId": 4, "currentPassword": "old-pass", "newPassword": "new-pass"})
        self.assertTrue(form.success)
        self.assertEqual((form.current_password, form.new_password, form.confirm_password), ("", "", ""))
        self.assertFalse(form.loading)

    def test_success_schedules_auto_close(self):
        form = self.filled()
        self.assertIsNone(form.close_after)
        form.submit(mock.Mock(return_value=(True, {"success": True})))
        self.assertEqual(form.close_after, AUTO_CLOSE_DELAY)
        self.assertTrue(form.reset())
        self.assertIsNone(form.close_after)
        self.assertFalse(form.success)

    def test_failure_does_not_auto_close(self):
        form = self.filled()
        form.submit(mock.Mock(return_value=(False, {"success": False, "error": "Nope"})))
        self.assertIsNone(form.close_after)

    def test_failure_keeps_fields_for_correction(self):
        form = self.filled()
        self.assertFalse(form.submit(mock.Mock(return_value=(False, {"success": False, "error": "Nope"}))))
        self.assertEqual(form.error, "Nope")
        self.assertEqual(form.new_password, "new-pass")

    def test_failure_without_message(self):
        form = self.filled()
        self.assertFalse(form.submit(mock.Mock(return_value=(False, {}))))
        self.assertEqual(form.error, FAILED_MESSAGE)

    def test_network_error(self):
        form = self.filled()
        with self.assertLogs("accounts.forms", level="ERROR"):
            self.assertFalse(form.submit(mock.Mock(side_effect=ConnectionError("refused"))))
        self.assertEqual(form.error, NETWORK_ERROR_MESSAGE)
        self.assertEqual(form.current_password, "old-pass")
        self.assertFalse(form.loading)

    def test_editing_clears_error(self):
        form = PasswordUpdateForm(user_id=4)
        form.validate()
        self.assertIsNotNone(form.error)
        form.update(current_password="x")
        self.assertIsNone(form.error)

    def test_reset_is_refused_while_loading(self):
        form = self.filled()
        form.loading = True
        self.assertFalse(form.reset())
        form.loading = False
        self.assertTrue(form.reset())
        self.assertEqual(form.current_password, "")


class UpdatePasswordApiTests(TestCase):
    url = "/api/update-password"

    def setUp(self):
        self.user = User.objects.create_user("alice", password="old-pass", role="employee")
        self.client = APIClient()
        self.client.force_authenticate(user=self.user)

    def post(self, **body):
        payload = {"userId": self.user.pk, "currentPassword": "old-pass", "newPassword": "new-pass"}
        payload.update(body)
        return self.client.post(self.url, payload, format="json")

    def test_updates_password(self):
        response = self.post(confirmPassword="new-pass")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"success": True})
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password("new-pass"))

    def test_validation_errors(self):
        cases = [
            ({"currentPassword": ""}, "Current password is required"),
            ({"newPassword": "abc"}, "New password must be at least 6 characters long"),
            ({"confirmPassword": "different"}, "New passwords do not match"),
            ({"newPassword": "old-pass"}, "New password must be different from current password"),
        ]
        for body, message in cases:
            with self.subTest(message=message):
                response = self.post(**body)
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json(), {"success": False, "error": message})

    def test_wrong_current_password(self):
        response = self.post(currentPassword="guess-again")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Current password is incorrect")
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password("old-pass"))

    def test_cannot_change_someone_elses_password(self):
        other = User.objects.create_user("bob", password="bob-pass")
        with self.assertLogs("accounts.views", level="WARNING"):
            response = self.post(userId=other.pk, currentPassword="bob-pass")
        self.assertEqual(response.status_code, 403)
        other.refresh_from_db()
        self.assertTrue(other.check_password("bob-pass"))

    def test_form_round_trip_through_api(self):
        def post(payload):
            response = self.client.post(self.url, payload, format="json")
            return response.status_code == 200, response.json()

        form = PasswordUpdateForm(user_id=self.user.pk)
        form.update(current_password="wrong-pass", new_password="new-pass", confirm_password="new-pass")
        self.assertFalse(form.submit(post))
        self.assertEqual(form.error, "Current password is incorrect")

        form.update(current_password="old-pass")
        self.assertTrue(form.submit(post))
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password("new-pass"))
