from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("order", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="orderlineitem",
            name="reserved_quantity",
            field=models.PositiveIntegerField(default=0),
        ),
    ]
