from django.core.management.base import BaseCommand

from uploads.s3 import ensure_bucket_exists, get_bucket_name


class Command(BaseCommand):
    help = "Create the audio bucket if it does not exist"

    def handle(self, *args, **options):
        bucket = get_bucket_name()

        if ensure_bucket_exists():
            self.stdout.write(self.style.SUCCESS(f"Bucket '{bucket}' created"))
        else:
            self.stdout.write(self.style.SUCCESS(f"Bucket '{bucket}' already exists"))
