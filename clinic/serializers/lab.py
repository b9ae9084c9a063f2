from rest_framework import serializers

from clinic.domain import Priority
from clinic.serializers.common import OperatorSerializer, clean_text


class LabOrderQuerySerializer(serializers.Serializer):
    patientId = serializers.CharField(required=False, max_length=20)


class LabOrderCreateSerializer(OperatorSerializer):
    patientId = serializers.CharField(max_length=20)
    test = serializers.CharField(max_length=100)
    priority = serializers.ChoiceField(choices=Priority.choices, required=False)
    equipment = serializers.CharField(required=False, allow_blank=True, max_length=50)

    def validate_test(self, v):
        return clean_text(v)


class LabResultSerializer(OperatorSerializer):
    result = serializers.DictField()
