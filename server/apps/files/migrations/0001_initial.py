import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='File',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('filename', models.CharField(help_text='Display name', max_length=255)),
                ('original_filename', models.CharField(help_text='Name the file was uploaded with', max_length=255)),
                ('path', models.CharField(db_index=True, help_text='Object key in storage: files/{user_id}/.../{uuid}', max_length=1024)),
                ('size_bytes', models.BigIntegerField(default=0, help_text='File size in bytes')),
                ('mime_type', models.CharField(help_text='MIME type detected from the filename extension', max_length=255)),
                ('is_folder', models.BooleanField(default=False)),
                ('checksum_sha256', models.CharField(blank=True, db_index=True, help_text='SHA256 of the content, used for deduplication', max_length=64, null=True)),
                ('is_deleted', models.BooleanField(db_index=True, default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('parent', models.ForeignKey(
                    blank=True,
                    help_text='Containing folder, empty for the owner root',
                    null=True,
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name='children',
                    to='files.file',
                )),
                ('user', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name='files',
                    to=settings.AUTH_USER_MODEL,
                )),
            ],
            options={
                'verbose_name': 'File',
                'verbose_name_plural': 'Files',
                'ordering': ['-is_folder', 'filename'],
                'indexes': [
                    models.Index(fields=['user', 'checksum_sha256'], name='files_user_checksum_idx'),
                    models.Index(fields=['user', 'parent', 'is_deleted'], name='files_user_parent_idx'),
                ],
            },
        ),
    ]
