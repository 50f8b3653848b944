from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="BusinessHoliday",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255)),
                ("date", models.DateField()),
                (
                    "is_recurring",
                    models.BooleanField(
                        default=False,
                        help_text="Repeat every year on the same month and day.",
                    ),
                ),
            ],
            options={
                "verbose_name": "Business Holiday",
                "verbose_name_plural": "Business Holidays",
                "ordering": ["date"],
            },
        ),
        migrations.CreateModel(
            name="BusinessException",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("date", models.DateField()),
                ("start_time", models.TimeField(blank=True, null=True)),
                ("end_time", models.TimeField(blank=True, null=True)),
                ("reason", models.CharField(blank=True, max_length=255)),
            ],
            options={
                "verbose_name": "Business Exception",
                "verbose_name_plural": "Business Exceptions",
                "ordering": ["date", "start_time"],
            },
        ),
    ]
