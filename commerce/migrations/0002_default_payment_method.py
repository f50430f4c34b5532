from django.db import migrations


def create_card_method(apps, schema_editor):
    PaymentMethod = apps.get_model('commerce', 'PaymentMethod')
    PaymentMethod.objects.get_or_create(
        name='Card',
        defaults={'description': 'Card payment through the hosted checkout page', 'sort_order': 0},
    )


class Migration(migrations.Migration):

    dependencies = [
        ('commerce', '0001_initial'),
    ]

    operations = [
        migrations.RunPython(create_card_method, migrations.RunPython.noop),
    ]
