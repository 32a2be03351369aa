from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models


class Service(models.Model):
    """A provider's bookable offering."""

    FIXED = "fixed"
    HOURLY = "hourly"
    QUOTE = "quote"
    DONATION = "donation"
    PRICING_MODELS = [
        (FIXED, "Fixed price"),
        (HOURLY, "Hourly rate"),
        (QUOTE, "Custom quote"),
        (DONATION, "Donation"),
    ]

    provider = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="services",
    )
    title = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    pricing_model = models.CharField(max_length=12, choices=PRICING_MODELS, default=FIXED)
    price_cents = models.PositiveIntegerField(null=True, blank=True)
    hourly_rate_cents = models.PositiveIntegerField(null=True, blank=True)
    default_duration_minutes = models.PositiveIntegerField(default=60, validators=[MinValueValidator(1)])
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["title", "id"]

    def __str__(self):
        return f"{self.title} ({self.get_pricing_model_display()})"

    @property
    def requires_manual_amount(self) -> bool:
        return self.pricing_model in {self.QUOTE, self.DONATION}

    def clean(self):
        super().clean()
        if self.pricing_model == self.FIXED and self.price_cents is None:
            raise ValidationError({"price_cents": "Fixed-price services need a price."})
        if self.pricing_model == self.HOURLY and self.hourly_rate_cents is None:
            raise ValidationError({"hourly_rate_cents": "Hourly services need an hourly rate."})

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)
