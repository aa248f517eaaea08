"""CLI script to load streams, departments, subjects and semesters from JSON.

Usage: python scripts/seed_catalog.py catalog.json [--semesters 8]

Expected file shape:
    {"streams": [{"name": "Science", "departments": [
        {"name": "Computer Science", "subjects": [{"name": "Maths I", "semester": 1}]}
    ]}]}

Existing rows (matched by name, or by number for semesters) are reused,
so the script can be run again after extending the file.
"""
import sys
import json
import argparse
import pathlib
from typing import Dict, List
# Ensure `backend/` is on sys.path so `registrar` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from registrar import services
from registrar.config import settings
from registrar.database import engine, create_db_and_tables


def seed(session: Session, data: dict, semesters: int) -> Dict[str, int]:
    """Create the catalog described by `data`; return per-kind created counts."""
    catalog = services.CatalogService(session)
    created = {'streams': 0, 'departments': 0, 'subjects': 0, 'semesters': 0}
    by_semester: Dict[int, List[int]] = {n: [] for n in range(1, semesters + 1)}
    for s in data.get('streams', []):
        stream = next((x for x in catalog.list_streams() if x.name == s['name']), None)
        if stream is None:
            stream = catalog.create_stream(s['name'])
            created['streams'] += 1
        for d in s.get('departments', []):
            dept = next((x for x in catalog.list_departments(stream.id) if x.name == d['name']), None)
            if dept is None:
                dept = catalog.create_department(d['name'], stream.id)
                created['departments'] += 1
            for sub in d.get('subjects', []):
                subject = next((x for x in catalog.list_subjects(dept.id) if x.name == sub['name']), None)
                if subject is None:
                    subject = catalog.create_subject(sub['name'], dept.id)
                    created['subjects'] += 1
                number = int(sub.get('semester', 1))
                if number not in by_semester:
                    raise ValueError(f"subject {sub['name']} names semester {number} outside 1..{semesters}")
                by_semester[number].append(subject.id)
    existing = {x.number: x for x in catalog.list_semesters()}
    for number, subject_ids in by_semester.items():
        semester = existing.get(number)
        if semester is None:
            catalog.create_semester(number, subject_ids)
            created['semesters'] += 1
        elif subject_ids:
            merged = [s.id for s in semester.subjects] + subject_ids
            catalog.set_semester_subjects(semester.id, merged)
    return created


def main(path: pathlib.Path, semesters: int):
    """Read `path` and seed the configured database.

    Results are printed to stdout for a quick CLI feedback loop.
    """
    if not path.exists():
        print(f'Catalog file not found at {path}')
        return
    data = json.loads(path.read_text(encoding='utf-8'))
    create_db_and_tables()
    with Session(engine) as session:
        try:
            created = seed(session, data, semesters)
        except (ValueError, KeyError) as e:
            print(f'Seeding failed: {e}')
            return
    print('Seeded: ' + ', '.join(f'{k}={v}' for k, v in created.items()))


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('path', type=pathlib.Path, help='JSON catalog file')
    parser.add_argument('--semesters', type=int, default=settings.MAX_SEMESTER, help='Number of semesters to create')
    args = parser.parse_args()
    main(args.path, args.semesters)
