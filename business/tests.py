from datetime import date, time

from django.core.exceptions import ValidationError
from django.test import TestCase

from business.models import BusinessException, BusinessHoliday
from providers.services import is_business_holiday


class BusinessHolidayTests(TestCase):
    def test_one_time_holiday_matches_exact_date(self):
        BusinessHoliday.objects.create(name="Renovation", date=date(2026, 5, 4))
        self.assertTrue(is_business_holiday(date(2026, 5, 4)))
        self.assertFalse(is_business_holiday(date(2027, 5, 4)))
        self.assertFalse(is_business_holiday(date(2026, 5, 5)))

    def test_recurring_holiday_matches_every_year(self):
        BusinessHoliday.objects.create(name="New Year", date=date(2020, 1, 1), is_recurring=True)
        self.assertTrue(is_business_holiday(date(2020, 1, 1)))
        self.assertTrue(is_business_holiday(date(2031, 1, 1)))
        self.assertFalse(is_business_holiday(date(2031, 1, 2)))

    def test_no_holidays_means_open(self):
        self.assertFalse(is_business_holiday(date(2026, 1, 1)))

    def test_str_shows_recurrence(self):
        recurring = BusinessHoliday.objects.create(
            name="New Year", date=date(2020, 1, 1), is_recurring=True
        )
        one_time = BusinessHoliday.objects.create(name="Renovation", date=date(2026, 5, 4))
        self.assertEqual(str(recurring), "New Year (every Jan 01)")
        self.assertEqual(str(one_time), "Renovation (2026-05-04)")


class BusinessExceptionTests(TestCase):
    def test_start_after_end_raises_error(self):
        with self.assertRaises(ValidationError):
            BusinessException.objects.create(
                date=date(2026, 5, 4),
                start_time=time(15, 0),
                end_time=time(14, 0),
            )

    def test_exception_without_times_is_allowed(self):
        exc = BusinessException.objects.create(date=date(2026, 5, 4), reason="Inventory day")
        self.assertEqual(str(exc), "Note for 2026-05-04: Inventory day")
