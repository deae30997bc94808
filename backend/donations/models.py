from django.core.validators import MinValueValidator
from django.db import models


class DonatedItem(models.Model):
    """A donated item and its current place in the donation lifecycle"""
    STATUS_RECEIVED = 'Received'
    STATUS_DONATED = 'Donated'
    STATUS_IN_STORAGE = 'In storage facility'
    STATUS_REFURBISHED = 'Refurbished'
    STATUS_SOLD = 'Item sold'
    STATUS_CHOICES = [
        (STATUS_RECEIVED, 'Received'),
        (STATUS_DONATED, 'Donated'),
        (STATUS_IN_STORAGE, 'In storage facility'),
        (STATUS_REFURBISHED, 'Refurbished'),
        (STATUS_SOLD, 'Item sold'),
    ]
    STATUS_VALUES = [value for value, _ in STATUS_CHOICES]

    item_type = models.CharField(max_length=255)
    category = models.CharField(max_length=255, db_index=True)
    quantity = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])
    current_status = models.CharField(max_length=50, choices=STATUS_CHOICES, default=STATUS_RECEIVED, db_index=True)
    date_donated = models.DateTimeField()
    last_updated = models.DateTimeField(auto_now=True)
    donor = models.ForeignKey('donors.Donor', on_delete=models.PROTECT, related_name='donated_items')
    program = models.ForeignKey('programs.Program', on_delete=models.SET_NULL, null=True, blank=True,
                                related_name='donated_items')
    # {tags, imagePath, analyzedAt, version} written by image analysis
    analysis_metadata = models.JSONField(null=True, blank=True)

    def __str__(self):
        return f"#{self.id} {self.item_type}"

    class Meta:
        db_table = 'donated_items'
        ordering = ['-date_donated', '-id']
        indexes = [
            models.Index(fields=['donor', 'date_donated'], name='donated_items_donor_idx'),
        ]


class DonatedItemStatus(models.Model):
    """One entry in an item's status history. Rows are only appended."""
    status_type = models.CharField(max_length=50, choices=DonatedItem.STATUS_CHOICES)
    date_modified = models.DateTimeField()
    donated_item = models.ForeignKey(DonatedItem, on_delete=models.CASCADE, related_name='statuses')
    # Storage references: public URLs (local) or "container/blob" (azure)
    image_urls = models.JSONField(default=list, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.donated_item_id}: {self.status_type} @ {self.date_modified:%Y-%m-%d}"

    class Meta:
        db_table = 'donated_item_statuses'
        ordering = ['date_modified', 'id']
        verbose_name_plural = 'donated item statuses'
