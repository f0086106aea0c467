from __future__ import annotations

import argparse
import sys

from .config import configure_logging
from .errors import PsicoError
from .seed import seed_base
from .services import (
    apply_fee_adjustment,
    create_patient,
    create_treatment,
    delete_fee_adjustment,
    edit_fee_adjustment,
    fee_overview_flat,
    init_db,
    inflation_series,
    list_patients_flat,
    list_treatments_flat,
    pending_payments_flat,
    record_inflation,
    record_session,
    suggest_fee,
    update_session,
)


def cmd_init(args: argparse.Namespace) -> None:
    init_db()
    if args.seed:
        seed_base()
        print("DB inizializzato e dati demo caricati.")
    else:
        print("DB inizializzato.")


def cmd_list(args: argparse.Namespace) -> None:
    if args.entity == "patients":
        for p in list_patients_flat():
            print(f"{p['id']} | {p['name']} | {p['status']} | {p['contact'] or '-'}")
    elif args.entity == "treatments":
        for t in list_treatments_flat(args.patient_id):
            stato = "attivo" if t["is_active"] else "chiuso"
            print(f"{t['id']} | paziente {t['patient_id']} | dal {t['start_date']} | {t['current_fee']} | {stato}")
    elif args.entity == "inflation":
        for r in inflation_series():
            print(f"{r['month'].strftime('%m/%Y')} | {r['percentage']}% | accumulata {r['accumulated']}%")


def cmd_add_patient(args: argparse.Namespace) -> None:
    pid = create_patient(args.name, args.contact, args.father_name, args.mother_name)
    print(f"Paziente creato: {pid}")


def cmd_add_treatment(args: argparse.Namespace) -> None:
    tid = create_treatment(args.patient_id, args.start_date, args.fee)
    print(f"Trattamento creato: {tid}")


def cmd_add_session(args: argparse.Namespace) -> None:
    sid = record_session(args.treatment_id, args.date, args.type, args.fee, args.paid)
    print(f"Prestazione registrata: {sid}")


def cmd_edit_session(args: argparse.Namespace) -> None:
    changes: dict = {}
    if args.date is not None:
        changes["session_date"] = args.date
    if args.type is not None:
        changes["session_type"] = args.type
    if args.fee is not None:
        changes["fee_charged"] = args.fee
    if args.paid is not None:
        changes["is_paid"] = args.paid == "si"
    x = update_session(args.session_id, **changes)
    stato = "pagata" if x["is_paid"] else "da incassare"
    print(f"Prestazione {x['id']}: {x['session_date']} | {x['session_type']} | {x['fee_charged']} | {stato}")


def cmd_add_inflation(args: argparse.Namespace) -> None:
    rid = record_inflation(args.month, args.percentage)
    print(f"Inflazione registrata: {rid}")


def _print_change(result: dict) -> None:
    adj = result["adjustment"]
    if adj is not None:
        print(
            f"Aggiustamento {adj['id']}: {adj['previous_fee']} -> {adj['new_fee']} "
            f"({adj['adjustment_percentage']}%) vigente dal {adj['adjustment_date']}"
        )
    if result["removed_adjustment_id"]:
        print(f"Aggiustamento eliminato: {result['removed_adjustment_id']}")
    suffix = "" if result["current_fee_changed"] else " (invariato)"
    print(f"Onorario attuale: {result['current_fee']}{suffix}")


def cmd_adjust(args: argparse.Namespace) -> None:
    _print_change(apply_fee_adjustment(args.treatment_id, args.fee, args.date, notes=args.notes))


def cmd_edit_adjustment(args: argparse.Namespace) -> None:
    _print_change(edit_fee_adjustment(args.adjustment_id, args.fee, args.date))


def cmd_delete_adjustment(args: argparse.Namespace) -> None:
    _print_change(delete_fee_adjustment(args.adjustment_id))


def cmd_suggest(args: argparse.Namespace) -> None:
    sg = suggest_fee(args.treatment_id)
    print(
        f"Riferimento {sg['reference_date']} | inflazione accumulata {sg['accumulated_inflation']}% | "
        f"attuale {sg['current_fee']} -> suggerito {sg['suggested_fee']} [{sg['status']}]"
    )


def cmd_fees(args: argparse.Namespace) -> None:
    rows = fee_overview_flat(args.query)
    if not rows:
        print("Nessun trattamento attivo.")
        return
    for r in rows:
        print(
            f"{r['patient_name'] or '-'} | {r['current_fee']} -> {r['suggested_fee']} | "
            f"{r['accumulated_inflation']}% dal {r['reference_date']} [{r['status']}]"
        )


def cmd_pending(args: argparse.Namespace) -> None:
    groups = pending_payments_flat()
    if not groups:
        print("Nessuna prestazione da incassare.")
        return
    for g in groups:
        print(f"{g['patient_name']} | {len(g['sessions'])} prestazioni | totale {g['total']}")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="psico", description="CLI gestione studio (pazienti, onorari, inflazione)")
    sub = p.add_subparsers(required=True)

    p_init = sub.add_parser("init", help="Crea DB")
    p_init.add_argument("--seed", action="store_true", help="Carica anche i dati demo")
    p_init.set_defaults(func=cmd_init)

    p_list = sub.add_parser("list", help="Lista entità")
    p_list.add_argument("entity", choices=["patients", "treatments", "inflation"])
    p_list.add_argument("--patient-id", default=None)
    p_list.set_defaults(func=cmd_list)

    p_addp = sub.add_parser("add-patient", help="Crea paziente")
    p_addp.add_argument("--name", required=True)
    p_addp.add_argument("--contact", default=None)
    p_addp.add_argument("--father-name", default=None)
    p_addp.add_argument("--mother-name", default=None)
    p_addp.set_defaults(func=cmd_add_patient)

    p_addt = sub.add_parser("add-treatment", help="Apre un trattamento")
    p_addt.add_argument("--patient-id", required=True)
    p_addt.add_argument("--start-date", required=True, help="ISO date es: 2024-01-15")
    p_addt.add_argument("--fee", required=True, help="Onorario iniziale")
    p_addt.set_defaults(func=cmd_add_treatment)

    p_adds = sub.add_parser("add-session", help="Registra prestazione")
    p_adds.add_argument("--treatment-id", required=True)
    p_adds.add_argument("--date", required=True)
    p_adds.add_argument("--type", default="session", choices=["session", "parent_orientation", "parent_interview"])
    p_adds.add_argument("--fee", default=None, help="Default: onorario attuale del trattamento")
    p_adds.add_argument("--paid", action="store_true")
    p_adds.set_defaults(func=cmd_add_session)

    p_eds = sub.add_parser("edit-session", help="Corregge una prestazione")
    p_eds.add_argument("--session-id", required=True)
    p_eds.add_argument("--date", default=None)
    p_eds.add_argument("--type", default=None, choices=["session", "parent_orientation", "parent_interview"])
    p_eds.add_argument("--fee", default=None)
    p_eds.add_argument("--paid", default=None, choices=["si", "no"])
    p_eds.set_defaults(func=cmd_edit_session)

    p_addi = sub.add_parser("add-inflation", help="Registra inflazione mensile")
    p_addi.add_argument("--month", required=True, help="YYYY-MM")
    p_addi.add_argument("--percentage", required=True)
    p_addi.set_defaults(func=cmd_add_inflation)

    p_adj = sub.add_parser("adjust", help="Applica aggiustamento di onorario")
    p_adj.add_argument("--treatment-id", required=True)
    p_adj.add_argument("--fee", required=True)
    p_adj.add_argument("--date", required=True, help="Data di vigenza")
    p_adj.add_argument("--notes", default=None)
    p_adj.set_defaults(func=cmd_adjust)

    p_edit = sub.add_parser("edit-adjustment", help="Modifica aggiustamento")
    p_edit.add_argument("--adjustment-id", required=True)
    p_edit.add_argument("--fee", required=True)
    p_edit.add_argument("--date", required=True)
    p_edit.set_defaults(func=cmd_edit_adjustment)

    p_del = sub.add_parser("delete-adjustment", help="Elimina aggiustamento")
    p_del.add_argument("--adjustment-id", required=True)
    p_del.set_defaults(func=cmd_delete_adjustment)

    p_sug = sub.add_parser("suggest", help="Onorario suggerito per inflazione")
    p_sug.add_argument("--treatment-id", required=True)
    p_sug.set_defaults(func=cmd_suggest)

    p_fees = sub.add_parser("fees", help="Panoramica onorari dei trattamenti attivi")
    p_fees.add_argument("--query", default=None, help="Filtro per nome paziente")
    p_fees.set_defaults(func=cmd_fees)

    p_pen = sub.add_parser("pending", help="Prestazioni da incassare per paziente")
    p_pen.set_defaults(func=cmd_pending)

    return p


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    parser = build_parser()
    args = parser.parse_args(argv)
    init_db()  # garantisce tabelle
    try:
        args.func(args)
    except PsicoError as e:
        print(f"Errore: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
