import bleach
from rest_framework import serializers


def clean_text(v):
    return bleach.clean((v or '').strip(), tags=set(), strip=True)


class OperatorSerializer(serializers.Serializer):
    operator = serializers.CharField(required=False, allow_blank=True, max_length=100)

    def validate_operator(self, v):
        return clean_text(v)
