from django.test import TestCase

from clients.models import Client


class ClientModelTests(TestCase):
    def test_name_joins_first_and_last(self):
        client = Client.objects.create(first_name="Omar", last_name="Haddad")
        self.assertEqual(client.name, "Omar Haddad")
        self.assertEqual(str(client), "Omar Haddad")

    def test_name_without_last_name(self):
        client = Client.objects.create(first_name="Lina")
        self.assertEqual(client.name, "Lina")

    def test_new_client_has_no_visits(self):
        client = Client.objects.create(first_name="Lina")
        self.assertIsNone(client.first_visit_date)
        self.assertIsNone(client.last_visit_date)
        self.assertEqual(client.no_show_count, 0)
