from django.db import models

MAX_TEXT = 500


class Program(models.Model):
    """A charitable program that donated items are allocated to"""
    name = models.CharField(max_length=255)
    description = models.TextField(max_length=MAX_TEXT)
    # Stored as 00:00 UTC of the program's start day
    start_date = models.DateTimeField()
    aim_and_cause = models.TextField(max_length=MAX_TEXT)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name

    class Meta:
        db_table = 'programs'
        ordering = ['id']
