from __future__ import annotations

import argparse
import logging
from datetime import datetime

from .appointments import AppointmentDraft, confirm_appointment, create_appointment, list_all, reject_appointment
from .config import LOG_FORMAT, load_settings
from .db import configure_engine, init_db
from .errors import ServiceError
from .models import Role
from .notifications import list_unread, mark_all_read, send_reminders
from .seed import seed_base
from .users import Actor, actor_for, create_user, get_user_by_email, list_users


def _admin() -> Actor:
    # la CLI agisce come il primo admin registrato
    admins = list_users(Role.ADMIN)
    if not admins:
        raise SystemExit("Nessun admin presente: esegui prima 'init'.")
    return actor_for(admins[0])


def cmd_init(args: argparse.Namespace) -> None:
    created = seed_base()
    print(f"DB inizializzato, {created} utenti creati dal seed.")


def cmd_list(args: argparse.Namespace) -> None:
    if args.entity == "users":
        for u in list_users():
            print(f"{u.id} | {u.last_name} {u.first_name} | {u.email} | {u.role.value}")
    elif args.entity == "appointments":
        for a in list_all(_admin()):
            print(
                f"{a.id} | {a.appointment_date_time.isoformat()} | {a.title} | "
                f"{a.status.value} | {a.payment_status.value}"
            )


def cmd_add_user(args: argparse.Namespace) -> None:
    u = create_user(
        args.first_name,
        args.last_name,
        args.email,
        args.password,
        role=Role(args.role),
        phone=args.phone,
        specialization=args.specialization,
    )
    print(f"Utente creato: {u.id}")


def cmd_book(args: argparse.Namespace) -> None:
    start = datetime.fromisoformat(args.start)  # formato: 2026-01-14T10:30
    app = create_appointment(
        AppointmentDraft(
            doctor_id=args.doctor_id,
            patient_id=args.patient_id,
            appointment_date_time=start,
            title=args.title,
            notes=args.notes,
        )
    )
    print(f"Appuntamento richiesto: {app.id} ({app.status.value})")


def cmd_confirm(args: argparse.Namespace) -> None:
    app = confirm_appointment(args.appointment_id, _admin())
    print(f"Appuntamento {app.id}: {app.status.value}")


def cmd_reject(args: argparse.Namespace) -> None:
    app = reject_appointment(args.appointment_id, _admin(), args.reason)
    print(f"Appuntamento {app.id}: {app.status.value} ({app.rejection_reason})")


def cmd_notifications(args: argparse.Namespace) -> None:
    """
    Simula un "Sistema Notifiche" esterno:
    - legge le notifiche non lette di un utente
    - le stampa su console
    - opzionalmente le marca come lette
    """
    user = get_user_by_email(args.email)
    unread = list_unread(user.id)
    if not unread:
        print("Nessuna notifica non letta.")
        return

    for n in unread:
        print(f"[{n.id}] {n.type.value} | {n.created_at.isoformat()} | {n.message}")

    if args.mark_read:
        count = mark_all_read(user.id)
        print(f"{count} notifiche marcate come lette.")


def cmd_remind(args: argparse.Namespace) -> None:
    count = send_reminders(within_hours=args.hours)
    print(f"{count} promemoria inviati.")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ambulatorio", description="CLI Ambulatorio (simulazione sistemi esterni)")
    sub = p.add_subparsers(required=True)

    p_init = sub.add_parser("init", help="Crea DB e carica seed")
    p_init.set_defaults(func=cmd_init)

    p_list = sub.add_parser("list", help="Lista entità")
    p_list.add_argument("entity", choices=["users", "appointments"])
    p_list.set_defaults(func=cmd_list)

    p_add = sub.add_parser("add-user", help="Crea utente")
    p_add.add_argument("--first-name", required=True)
    p_add.add_argument("--last-name", required=True)
    p_add.add_argument("--email", required=True)
    p_add.add_argument("--password", required=True)
    p_add.add_argument("--role", choices=[r.value for r in Role], default=Role.PATIENT.value)
    p_add.add_argument("--phone", default=None)
    p_add.add_argument("--specialization", default=None)
    p_add.set_defaults(func=cmd_add_user)

    p_book = sub.add_parser("book", help="Richiedi appuntamento")
    p_book.add_argument("--patient-id", required=True)
    p_book.add_argument("--doctor-id", required=True)
    p_book.add_argument("--start", required=True, help="ISO datetime es: 2026-01-14T10:30")
    p_book.add_argument("--title", required=True)
    p_book.add_argument("--notes", default=None)
    p_book.set_defaults(func=cmd_book)

    p_conf = sub.add_parser("confirm", help="Conferma appuntamento")
    p_conf.add_argument("--appointment-id", required=True)
    p_conf.set_defaults(func=cmd_confirm)

    p_rej = sub.add_parser("reject", help="Rifiuta appuntamento")
    p_rej.add_argument("--appointment-id", required=True)
    p_rej.add_argument("--reason", default=None)
    p_rej.set_defaults(func=cmd_reject)

    p_not = sub.add_parser("notifications", help="Legge le notifiche non lette (simulazione)")
    p_not.add_argument("--email", required=True)
    p_not.add_argument("--mark-read", action="store_true", help="Marca come lette dopo averle stampate")
    p_not.set_defaults(func=cmd_notifications)

    p_rem = sub.add_parser("remind", help="Invia promemoria per gli appuntamenti imminenti")
    p_rem.add_argument("--hours", type=int, default=24)
    p_rem.set_defaults(func=cmd_remind)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = load_settings()
    logging.basicConfig(level=settings.log_level.upper(), format=LOG_FORMAT)
    configure_engine(settings.database_url)
    init_db()  # garantisce tabelle

    try:
        args.func(args)
    except ServiceError as e:
        print(f"Errore ({e.kind}): {e.message}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
