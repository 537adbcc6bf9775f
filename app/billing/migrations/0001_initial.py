import uuid

import django.db.models.deletion
import django_fsm
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="CreditAccount",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "owner_id",
                    models.CharField(
                        help_text="Stable external identity that owns this account",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "customer_ref",
                    models.CharField(
                        blank=True,
                        help_text="Payment provider customer id (e.g. Polar customer id)",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "balance",
                    models.BigIntegerField(
                        default=0,
                        help_text="Cached balance in credits; equals the sum of entries",
                    ),
                ),
                (
                    "is_active",
                    models.BooleanField(
                        db_index=True,
                        default=True,
                        help_text="Whether this account can reserve credits",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="LedgerEntry",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("amount_delta", models.BigIntegerField(help_text="Signed amount in credits")),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("purchase", "Purchase"),
                            ("usage", "Usage"),
                            ("refund", "Refund"),
                            ("subscription_grant", "Subscription Grant"),
                            ("adjustment", "Adjustment"),
                        ],
                        help_text="Category of this movement",
                        max_length=32,
                    ),
                ),
                (
                    "external_ref",
                    models.CharField(
                        blank=True,
                        help_text="External identifier, unique per kind",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "cycle_key",
                    models.CharField(
                        blank=True,
                        help_text="Billing cycle identifier for subscription grants",
                        max_length=32,
                        null=True,
                    ),
                ),
                (
                    "balance_after",
                    models.BigIntegerField(
                        help_text="Account balance immediately after this entry"
                    ),
                ),
                ("description", models.TextField(blank=True, default="")),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                (
                    "account",
                    models.ForeignKey(
                        help_text="Account whose balance this entry moves",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="entries",
                        to="billing.creditaccount",
                    ),
                ),
            ],
            options={
                "verbose_name_plural": "Ledger entries",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["account", "created_at"],
                        name="billing_led_account_eeede7_idx",
                    ),
                    models.Index(
                        fields=["kind", "created_at"],
                        name="billing_led_kind_0c827e_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount_delta", 0), _negated=True),
                        name="ledger_entry_amount_delta_nonzero",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(("kind", "subscription_grant"), _negated=True),
                            ("cycle_key__isnull", False),
                            _connector="OR",
                        ),
                        name="ledger_entry_grant_has_cycle_key",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(("external_ref__isnull", False)),
                        fields=("external_ref", "kind"),
                        name="unique_ledger_entry_external_ref_per_kind",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(("kind", "subscription_grant")),
                        fields=("account", "cycle_key"),
                        name="unique_subscription_grant_per_cycle",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Reservation",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "amount_reserved",
                    models.PositiveBigIntegerField(
                        help_text="Credits held while the call is in flight"
                    ),
                ),
                (
                    "amount_committed",
                    models.PositiveBigIntegerField(
                        blank=True,
                        help_text="Credits actually consumed (set on commit)",
                        null=True,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("active", "Active"),
                            ("committed", "Committed"),
                            ("released", "Released"),
                            ("expired", "Expired"),
                        ],
                        db_index=True,
                        default="active",
                        max_length=20,
                    ),
                ),
                (
                    "feature",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="AI feature consuming the credits",
                        max_length=64,
                    ),
                ),
                (
                    "model",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="AI model identifier",
                        max_length=128,
                    ),
                ),
                ("metadata", models.JSONField(blank=True, default=dict)),
                (
                    "expires_at",
                    models.DateTimeField(help_text="Hold lapses after this instant"),
                ),
                ("resolved_at", models.DateTimeField(blank=True, null=True)),
                (
                    "account",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="reservations",
                        to="billing.creditaccount",
                    ),
                ),
                (
                    "ledger_entry",
                    models.ForeignKey(
                        blank=True,
                        help_text="USAGE entry created on commit",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to="billing.ledgerentry",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["account", "status", "expires_at"],
                        name="billing_res_account_6a6d45_idx",
                    ),
                    models.Index(
                        fields=["status", "expires_at"],
                        name="billing_res_status_8ea263_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount_reserved__gt", 0)),
                        name="reservation_amount_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "external_event_id",
                    models.CharField(
                        help_text="Provider event id - unique constraint for idempotency",
                        max_length=255,
                        unique=True,
                    ),
                ),
                ("event_type", models.CharField(db_index=True, max_length=100)),
                ("payload", models.JSONField(blank=True, default=dict)),
                (
                    "status",
                    models.CharField(
                        choices=[("processed", "Processed"), ("ignored", "Ignored")],
                        db_index=True,
                        default="processed",
                        max_length=20,
                    ),
                ),
                ("received_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "verbose_name": "Webhook Event",
                "verbose_name_plural": "Webhook Events",
                "ordering": ["-received_at"],
                "indexes": [
                    models.Index(
                        fields=["event_type", "received_at"],
                        name="billing_web_event_t_c7fd80_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Subscription",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "provider_subscription_id",
                    models.CharField(
                        help_text="Provider subscription id", max_length=255, unique=True
                    ),
                ),
                (
                    "plan_ref",
                    models.CharField(
                        help_text="Provider product id of the plan", max_length=255
                    ),
                ),
                (
                    "credits_per_cycle",
                    models.PositiveIntegerField(
                        help_text="Credits granted per billing cycle"
                    ),
                ),
                (
                    "interval",
                    models.CharField(
                        choices=[("month", "Monthly"), ("year", "Yearly")],
                        default="month",
                        max_length=10,
                    ),
                ),
                (
                    "anchor_at",
                    models.DateTimeField(
                        help_text="Start of the first billing period; cycles are computed from it"
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("active", "Active"),
                            ("canceled", "Canceled"),
                            ("revoked", "Revoked"),
                        ],
                        db_index=True,
                        default="active",
                        max_length=50,
                    ),
                ),
                (
                    "provider_status",
                    models.CharField(
                        default="active",
                        help_text="Status reported by the provider (active, trialing, past_due...)",
                        max_length=32,
                    ),
                ),
                ("canceled_at", models.DateTimeField(blank=True, null=True)),
                (
                    "ends_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="No cycle starting at or after this instant is granted",
                        null=True,
                    ),
                ),
                (
                    "last_granted_cycle",
                    models.CharField(blank=True, default="", max_length=32),
                ),
                ("metadata", models.JSONField(blank=True, default=dict)),
                (
                    "account",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="subscriptions",
                        to="billing.creditaccount",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "ends_at"],
                        name="billing_sub_status_4522c6_idx",
                    ),
                    models.Index(
                        fields=["account", "status"],
                        name="billing_sub_account_0905ff_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("credits_per_cycle__gt", 0)),
                        name="subscription_credits_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="ReconciliationRun",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("window_start", models.DateTimeField()),
                ("window_end", models.DateTimeField()),
                (
                    "started_at",
                    models.DateTimeField(help_text="When this reconciliation run started"),
                ),
                (
                    "completed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When this reconciliation run completed (or failed)",
                        null=True,
                    ),
                ),
                ("orders_checked", models.PositiveIntegerField(default=0)),
                ("entries_checked", models.PositiveIntegerField(default=0)),
                ("expected_total", models.BigIntegerField(default=0)),
                ("actual_total", models.BigIntegerField(default=0)),
                ("discrepancies_found", models.PositiveIntegerField(default=0)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("running", "Running"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="running",
                        max_length=20,
                    ),
                ),
                (
                    "error_message",
                    models.TextField(
                        blank=True, help_text="Error message if the run failed"
                    ),
                ),
            ],
            options={
                "ordering": ["-started_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "started_at"],
                        name="billing_rec_status_e26264_idx",
                    ),
                    models.Index(
                        fields=["started_at"],
                        name="billing_rec_started_e9e8b8_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="ReconciliationDiscrepancy",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "discrepancy_type",
                    models.CharField(
                        choices=[
                            ("missing_ledger_entry", "Missing Ledger Entry"),
                            ("amount_mismatch", "Amount Mismatch"),
                            ("orphan_ledger_entry", "Orphan Ledger Entry"),
                            ("unknown_product", "Unknown Product"),
                            ("balance_drift", "Balance Drift"),
                        ],
                        db_index=True,
                        max_length=50,
                    ),
                ),
                (
                    "external_ref",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Provider order id or ledger external_ref",
                        max_length=255,
                    ),
                ),
                (
                    "expected",
                    models.BigIntegerField(
                        blank=True,
                        help_text="Credits according to the provider (or computed balance)",
                        null=True,
                    ),
                ),
                (
                    "actual",
                    models.BigIntegerField(
                        blank=True,
                        help_text="Credits according to the ledger (or cached balance)",
                        null=True,
                    ),
                ),
                ("details", models.JSONField(blank=True, default=dict)),
                (
                    "resolution",
                    models.CharField(
                        choices=[
                            ("flagged_for_review", "Flagged for Review"),
                            ("manually_resolved", "Manually Resolved"),
                        ],
                        db_index=True,
                        default="flagged_for_review",
                        max_length=20,
                    ),
                ),
                ("reviewed", models.BooleanField(db_index=True, default=False)),
                ("reviewed_at", models.DateTimeField(blank=True, null=True)),
                ("review_notes", models.TextField(blank=True)),
                (
                    "account",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="billing.creditaccount",
                    ),
                ),
                (
                    "run",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="discrepancies",
                        to="billing.reconciliationrun",
                    ),
                ),
            ],
            options={
                "verbose_name_plural": "Reconciliation discrepancies",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["resolution", "reviewed"],
                        name="billing_rec_resolut_03bc0f_idx",
                    ),
                    models.Index(
                        fields=["run", "discrepancy_type"],
                        name="billing_rec_run_id_119b94_idx",
                    ),
                ],
            },
        ),
    ]
