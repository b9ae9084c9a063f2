from rest_framework import serializers

from clinic.domain import Gender, Priority, Status
from clinic.serializers.common import OperatorSerializer, clean_text


class RegisterPatientSerializer(OperatorSerializer):
    name = serializers.CharField(max_length=255)
    age = serializers.IntegerField()
    gender = serializers.ChoiceField(choices=Gender.choices)
    phone = serializers.CharField(required=False, allow_blank=True, max_length=32)
    urgent = serializers.BooleanField(required=False, default=False)

    def validate_name(self, v):
        v = clean_text(v)
        if len(v) < 2:
            raise serializers.ValidationError('name must be at least 2 characters')
        return v

    def validate_phone(self, v):
        return clean_text(v)

    def demographics(self) -> dict:
        data = self.validated_data
        return {'name': data['name'], 'age': data['age'], 'gender': data['gender'], 'phone': data.get('phone', '')}


class PatientListQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Status.choices, required=False)
    search = serializers.CharField(required=False, allow_blank=True, max_length=100)


class LabTestSerializer(serializers.Serializer):
    test = serializers.CharField(max_length=100)
    priority = serializers.ChoiceField(choices=Priority.choices, required=False)
    equipment = serializers.CharField(required=False, allow_blank=True, max_length=50)

    def validate_test(self, v):
        return clean_text(v)


class PrescriptionItemSerializer(serializers.Serializer):
    drugId = serializers.CharField(max_length=50)
    quantity = serializers.IntegerField(min_value=1)
    dosage = serializers.CharField(max_length=255)
    prescriber = serializers.CharField(max_length=100)

    def validate_dosage(self, v):
        return clean_text(v)

    def validate_prescriber(self, v):
        return clean_text(v)


class AdvanceSerializer(OperatorSerializer):
    target = serializers.ChoiceField(choices=Status.choices)
    expectedVersion = serializers.IntegerField(required=False, min_value=0)
    tests = LabTestSerializer(many=True, required=False)
    prescriptions = PrescriptionItemSerializer(many=True, required=False)
    urgent = serializers.BooleanField(required=False)

    def payload(self) -> dict:
        data = self.validated_data
        payload = {}
        if 'tests' in data:
            payload['tests'] = [
                {'test': t['test'], 'priority': t.get('priority'), 'equipment': t.get('equipment') or None}
                for t in data['tests']
            ]
        if 'prescriptions' in data:
            payload['prescriptions'] = [
                {'drug_id': p['drugId'], 'quantity': p['quantity'], 'dosage': p['dosage'], 'prescriber': p['prescriber']}
                for p in data['prescriptions']
            ]
        if 'urgent' in data:
            payload['urgent'] = data['urgent']
        return payload


class VitalsSerializer(OperatorSerializer):
    bloodPressure = serializers.CharField(max_length=10)
    temperature = serializers.FloatField()
    heartRate = serializers.IntegerField()
    weight = serializers.FloatField()
    complaint = serializers.CharField(required=False, allow_blank=True, max_length=500)

    def validate_complaint(self, v):
        return clean_text(v)

    def vitals(self) -> dict:
        data = self.validated_data
        return {
            'blood_pressure': data['bloodPressure'],
            'temperature': data['temperature'],
            'heart_rate': data['heartRate'],
            'weight': data['weight'],
            'complaint': data.get('complaint', ''),
        }


class FailsafeSerializer(OperatorSerializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255)

    def validate_reason(self, v):
        return clean_text(v)
