"""
Backend gestione studio (psicologia): pazienti, trattamenti, prestazioni, onorari, inflazione.

Struttura:
- config.py    : impostazioni da .env (python-dotenv) e logging
- db.py        : engine e sessioni SQLAlchemy
- models.py    : modelli ORM e enum
- snapshot.py  : valori immutabili letti dal DB (input del nucleo di calcolo)
- inflation.py : inflazione accumulata e semaforo onorari
- ledger.py    : aggiustamenti di onorario e onorario suggerito
- reports.py   : incassi pendenti, metriche, panoramica onorari
- services.py  : use case (CRUD + ledger persistito)
- api_main.py  : API FastAPI con autenticazione JWT
- cli.py       : CLI
- seed.py      : dati demo
"""
