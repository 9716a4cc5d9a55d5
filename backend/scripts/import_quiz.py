"""CLI script to import quiz definitions from a JSON file into the backend DB.
Usage: python scripts/import_quiz.py OWNER_EMAIL quizzes.json [--dry-run]

The file holds either one quiz object or a list of them, in the same
shape the `POST /quiz` endpoint accepts.
"""
import sys
import argparse
import json
import pathlib
# Ensure `backend/` is on sys.path so `lingoquiz` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from pydantic import ValidationError
from sqlmodel import Session
from lingoquiz.database import engine, create_db_and_tables
from lingoquiz import repositories, schemas, services


def main(owner_email: str, path: pathlib.Path, dry_run: bool = False) -> int:
    """Validate every quiz in `path` and create the valid ones for the owner.

    Invalid items are reported with all of their field errors and skipped.
    Returns the number of quizzes created.
    """
    items = json.loads(path.read_text(encoding='utf-8'))
    if isinstance(items, dict):
        items = [items]
    create_db_and_tables()
    with Session(engine) as session:
        owner = repositories.UserRepository(session).get_by_email(owner_email)
        if not owner:
            print(f'No user registered with email {owner_email}')
            return 0
        svc = services.QuizService(session)
        created = 0
        for idx, raw in enumerate(items):
            try:
                data = schemas.QuizIn.model_validate(raw)
            except ValidationError as e:
                print(f'Item {idx}: {e.error_count()} validation error(s)')
                for err in e.errors():
                    print('  ' + '.'.join(str(p) for p in err['loc']) + ': ' + err['msg'])
                continue
            if dry_run:
                print(f'Item {idx}: "{data.title}" is valid ({len(data.questions)} questions)')
                continue
            quiz = svc.create(owner.id, data)
            created += 1
            print(f'Created quiz {quiz.id}: "{quiz.title}" worth {quiz.total_points} points')
        print(f'Total created quizzes: {created}')
        return created

if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('owner_email', help='Email of the registered user who will own the quizzes')
    parser.add_argument('path', type=pathlib.Path, help='JSON file with one quiz or a list of quizzes')
    parser.add_argument('--dry-run', action='store_true', help='Only validate the file')
    args = parser.parse_args()
    main(args.owner_email, args.path, dry_run=args.dry_run)
