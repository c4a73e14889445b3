from rest_framework import serializers

from apps.billing.models import Invoice, Payment, PaymentMethod
from apps.enrolments.models import Enrolment


class BillingSnapshotSerializer(serializers.Serializer):
    enrolment_id = serializers.IntegerField()
    billing_type = serializers.CharField()
    paid_through_date = serializers.DateField(allow_null=True)
    next_payment_due_date = serializers.DateField(allow_null=True)
    remaining_credits = serializers.IntegerField(allow_null=True)
    credit_balance = serializers.IntegerField(allow_null=True)
    covered_occurrences = serializers.IntegerField()
    sessions_per_week = serializers.IntegerField()
    as_of = serializers.DateField()
    horizon_exceeded = serializers.BooleanField()
    is_overdue = serializers.BooleanField()


class AsOfQuerySerializer(serializers.Serializer):
    as_of = serializers.DateField(required=False, allow_null=True)


class BatchStatusRequestSerializer(serializers.Serializer):
    enrolment_ids = serializers.ListField(
        child=serializers.IntegerField(min_value=1), allow_empty=False, max_length=500
    )
    as_of = serializers.DateField(required=False, allow_null=True)


class EnrolmentBillingSerializer(serializers.ModelSerializer):
    student_name = serializers.CharField(source="student.__str__", read_only=True)
    template_name = serializers.CharField(source="template.name", read_only=True)
    billing_type = serializers.CharField(source="plan.billing_type", read_only=True)

    class Meta:
        model = Enrolment
        fields = [
            "id",
            "student",
            "student_name",
            "template",
            "template_name",
            "plan",
            "billing_type",
            "status",
            "start_date",
            "end_date",
            "paid_through_date",
            "paid_through_date_computed",
            "next_due_date_computed",
            "credits_balance_cached",
            "billing_refreshed_at",
        ]
        read_only_fields = fields


class PaymentCreateSerializer(serializers.Serializer):
    invoice_id = serializers.IntegerField(min_value=1)
    amount_cents = serializers.IntegerField(min_value=1)
    method = serializers.ChoiceField(choices=PaymentMethod.choices, default=PaymentMethod.CASH)
    paid_at = serializers.DateTimeField(required=False, allow_null=True)
    note = serializers.CharField(required=False, allow_blank=True, max_length=255, default="")


class InvoiceSerializer(serializers.ModelSerializer):
    class Meta:
        model = Invoice
        fields = [
            "id",
            "family",
            "enrolment",
            "status",
            "amount_cents",
            "amount_paid_cents",
            "due_date",
            "paid_at",
            "coverage_start",
            "coverage_end",
            "credits_purchased",
        ]
        read_only_fields = fields


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = ["id", "family", "invoice", "amount_cents", "method", "paid_at", "note"]
        read_only_fields = fields
