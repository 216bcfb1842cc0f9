#!/usr/bin/env python3
"""
Generate test medical records for a patient.

This script builds random structured records and sends them to the API,
which encrypts each one with the patient's derived key and stores the
ciphertext. The returned content identifiers are printed so they can be
fetched back with GET /api/records/<cid>.
"""

import argparse
import os
import random
import sys
from datetime import datetime, timedelta

import requests
from dotenv import load_dotenv

# Add parent directory to path to import from medvault
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from medvault.constants import RECORD_TYPES
from medvault.models import MedicalRecord

# Load environment variables
load_dotenv()

# Constants
API_URL = os.getenv("API_URL", "http://localhost:8000")
PATIENT_ADDRESS = "0xEDB64f85F1fC9357EcA100C2970f7F84a5faAD4A"  # Default patient address

DIAGNOSES = {
    "Cardiology": ["Hypertension", "Coronary Artery Disease", "Atrial Fibrillation"],
    "Endocrinology": ["Diabetes Type 1", "Diabetes Type 2", "Hypothyroidism"],
    "Pulmonology": ["Asthma", "COPD", "Pneumonia"],
    "General": ["Common Cold", "Influenza", "Obesity"],
}

TREATMENTS = {
    "Cardiology": ["Beta Blockers", "ACE Inhibitors", "Anticoagulants"],
    "Endocrinology": ["Insulin Therapy", "Metformin", "Hormone Replacement"],
    "Pulmonology": ["Bronchodilators", "Inhaled Corticosteroids", "Oxygen Therapy"],
    "General": ["Rest and Fluids", "Antiviral Medication", "Diet and Exercise"],
}

HOSPITALS = [
    "General Hospital",
    "University Medical Center",
    "Memorial Hospital",
]

NOTES_TEMPLATES = [
    "Patient is responding well to treatment. Follow-up in {0} weeks.",
    "Patient reports no significant changes since last visit. Monitoring condition.",
    "Discussed lifestyle modifications. Follow-up in {0} weeks.",
]


def generate_random_record(patient_address):
    """Generate a random structured medical record."""
    category = random.choice(list(DIAGNOSES))
    days_ago = random.randint(1, 1095)  # Up to 3 years
    treatment = random.choice(TREATMENTS[category])

    return MedicalRecord(
        record_type=random.choice([RECORD_TYPES["DIAGNOSIS"], RECORD_TYPES["PRESCRIPTION"], RECORD_TYPES["VISIT"]]),
        patient_address=patient_address,
        diagnosis=random.choice(DIAGNOSES[category]),
        treatment=treatment,
        medications=[f"{treatment} {random.randint(5, 100)}mg daily"],
        hospital=random.choice(HOSPITALS),
        notes=random.choice(NOTES_TEMPLATES).format(random.choice([4, 6, 8, 12])),
        date=(datetime.now() - timedelta(days=days_ago)).strftime("%Y-%m-%d"),
    )


def create_record(record, identifier, register=False):
    """Send one record to the API and return the response data."""
    response = requests.post(
        f"{API_URL}/api/records",
        json={"identifier": identifier, "record": record.model_dump(), "register": register},
    )
    if response.status_code != 200:
        print(f"❌ Error creating record: {response.status_code} - {response.text}")
        return None
    return response.json()["data"]


def main():
    parser = argparse.ArgumentParser(description="Generate encrypted test records")
    parser.add_argument("--patient", default=PATIENT_ADDRESS, help="Patient wallet address")
    parser.add_argument("--count", type=int, default=10, help="Number of records to create")
    parser.add_argument("--register", action="store_true", help="Also create each record on the ledger")
    args = parser.parse_args()

    created = 0
    for i in range(args.count):
        record = generate_random_record(args.patient)
        data = create_record(record, args.patient, args.register)
        if data is None:
            continue
        created += 1
        mode = data["ciphertext_meta"]["backend_mode"]
        record_id = data.get("record_id")
        suffix = f" (record {record_id})" if record_id is not None else ""
        print(f"✅ [{i + 1}/{args.count}] {record.record_type}: {data['content_id']} via {mode}{suffix}")

    print(f"Created {created} of {args.count} records for {args.patient}")
    sys.exit(0 if created == args.count else 1)


if __name__ == "__main__":
    main()
