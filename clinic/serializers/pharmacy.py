from rest_framework import serializers

from clinic.serializers.common import OperatorSerializer


class PrescriptionQuerySerializer(serializers.Serializer):
    patientId = serializers.CharField(required=False, max_length=20)


class RestockSerializer(OperatorSerializer):
    quantity = serializers.IntegerField(min_value=0)
    expiryDate = serializers.DateField(required=False)
