from django.core.management.base import BaseCommand, CommandError

from ...image_analysis import ImageAnalysisError, analyze_image_tags, is_configured
from ...models import DonatedItem
from ...storage import StorageError, fetch_image
from ...views import latest_image_reference


class Command(BaseCommand):
    help = 'Run AI tagging for donated items that have photos but no analysis yet'

    def add_arguments(self, parser):
        parser.add_argument('--all', action='store_true', help='Re-tag every item with photos, not only untagged ones')

    def handle(self, *args, **options):
        if not is_configured():
            raise CommandError('GOOGLE_GEMINI_API_KEY is not set')

        items = DonatedItem.objects.prefetch_related('statuses').order_by('id')
        if not options['all']:
            items = items.filter(analysis_metadata__isnull=True)

        tagged_count = 0
        skipped_count = 0
        error_count = 0

        self.stdout.write(f'Checking {items.count()} donated items')

        for item in items:
            image_ref = latest_image_reference(item)
            if not image_ref:
                skipped_count += 1
                continue
            try:
                image_bytes, mime_type = fetch_image(image_ref)
                result = analyze_image_tags(image_bytes, mime_type, item, image_ref)
                tagged_count += 1
                self.stdout.write(f'  ✓ Item {item.id} ({item.item_type}): {len(result.tags)} tags')
            except (StorageError, ImageAnalysisError) as e:
                error_count += 1
                self.stdout.write(self.style.ERROR(f'  ✗ Item {item.id} ({item.item_type}): {e}'))

        self.stdout.write(self.style.SUCCESS(
            f'\nCompleted: {tagged_count} tagged, {skipped_count} without photos, {error_count} errors'
        ))
