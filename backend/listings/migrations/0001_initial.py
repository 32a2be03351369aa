from django.conf import settings
import django.core.validators
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Service",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("title", models.CharField(max_length=200)),
                ("description", models.TextField(blank=True)),
                (
                    "pricing_model",
                    models.CharField(
                        choices=[
                            ("fixed", "Fixed price"),
                            ("hourly", "Hourly rate"),
                            ("quote", "Custom quote"),
                            ("donation", "Donation"),
                        ],
                        default="fixed",
                        max_length=12,
                    ),
                ),
                ("price_cents", models.PositiveIntegerField(blank=True, null=True)),
                ("hourly_rate_cents", models.PositiveIntegerField(blank=True, null=True)),
                (
                    "default_duration_minutes",
                    models.PositiveIntegerField(default=60, validators=[django.core.validators.MinValueValidator(1)]),
                ),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "provider",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="services",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["title", "id"],
            },
        ),
    ]
