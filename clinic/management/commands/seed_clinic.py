"""
Management command to load the demo clinic: drugs, equipment state and
patients spread across every stage of the visit.
"""
from datetime import timedelta

from django.core.management.base import BaseCommand
from django.utils import timezone

from clinic.domain import Status
from clinic.services.runtime import get_engine

DRUGS = [
    ('AMX-500', 'Amoxicillin 500mg', 120, 365),
    ('PCM-500', 'Paracetamol 500mg', 8, 540),
    ('OMP-20', 'Omeprazole 20mg', 60, 20),
]

VITALS = {
    'blood_pressure': '120/80', 'temperature': 36.8, 'heart_rate': 76, 'weight': 68.0,
    'complaint': 'Headache and fever for two days',
}


class Command(BaseCommand):
    help = 'Seed the clinic with demo patients, drugs and equipment state'

    def add_arguments(self, parser):
        parser.add_argument('--force', action='store_true', help='seed even when patients already exist')

    def handle(self, *args, **options):
        engine = get_engine()
        if len(engine.registry) and not options['force']:
            self.stdout.write(self.style.WARNING('clinic already has patients, use --force to seed anyway'))
            return

        today = timezone.localdate()
        for drug_id, name, quantity, days in DRUGS:
            if drug_id not in engine.ledger:
                engine.add_drug(drug_id, name, quantity, expiry_date=today + timedelta(days=days))

        operator = 'seed'
        engine.register_patient({'name': 'Kebede Kassahun', 'age': 62, 'gender': 'M', 'phone': '0933445566'},
                                operator=operator)

        abebe = engine.register_patient({'name': 'Abebe Bikila', 'age': 45, 'gender': 'M', 'phone': '0911223344'},
                                        operator=operator)
        engine.advance(abebe.id, Status.IN_TRIAGE, operator=operator)

        marta = self._to_doctor(engine, {'name': 'Marta Desalegn', 'age': 28, 'gender': 'F', 'phone': '0922334455'})

        sara = self._to_doctor(engine, {'name': 'Sara Yonas', 'age': 34, 'gender': 'F', 'phone': '0944556677'})
        engine.advance(sara.id, Status.LAB, {'tests': [
            {'test': 'CBC', 'priority': 'High'},
            {'test': 'Lipid Profile', 'priority': 'Normal'},
            {'test': 'Glucose Fasting', 'priority': 'Normal'},
        ]}, operator=operator)
        first = engine.list_lab_orders(sara.id)[0]
        engine.begin_processing(first.id)

        dawit = self._to_doctor(engine, {'name': 'Dawit Birhanu', 'age': 19, 'gender': 'M', 'phone': '0955667788'})
        engine.advance(dawit.id, Status.PHARMACY, {'prescriptions': [
            {'drug_id': 'AMX-500', 'quantity': 21, 'dosage': '1x3 for 7 days', 'prescriber': 'Dr. Girma'},
            {'drug_id': 'PCM-500', 'quantity': 6, 'dosage': '1x2 PRN', 'prescriber': 'Dr. Hagos'},
        ]}, operator=operator)

        for unit in engine.list_equipment():
            if unit.id == 'centrifuge-a1':
                engine.set_equipment_active(unit.id, False)

        self.stdout.write(self.style.SUCCESS(
            f"Seeded {len(engine.registry)} patients (doctor is seeing {marta.id}), {len(DRUGS)} drugs"
        ))

    def _to_doctor(self, engine, demographics):
        patient = engine.register_patient(demographics, operator='seed')
        engine.advance(patient.id, Status.IN_TRIAGE, operator='seed')
        engine.record_vitals(patient.id, VITALS)
        return engine.advance(patient.id, Status.WITH_DOCTOR, operator='seed')
