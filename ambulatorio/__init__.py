"""
Backend applicativo Ambulatorio.

Struttura:
- config.py        : impostazioni lette all'avvio (.env + variabili d'ambiente)
- db.py            : engine e sessioni SQLAlchemy
- models.py        : modelli ORM e enum
- errors.py        : tassonomia degli errori di dominio
- users.py         : anagrafica utenti (pazienti, medici, admin) e autenticazione
- appointments.py  : ciclo di vita degli appuntamenti (creazione, conferma, rifiuto, ...)
- payments.py      : pagamenti simulati e rimborsi
- notifications.py : notifiche persistite per utente
- chatbot.py       : assistente chat (sessioni, messaggi, risposte)
- knowledge.py     : client HTTP verso fonti mediche e chat API esterne
- records.py       : cartelle cliniche, prescrizioni, referti
- storage.py       : archiviazione file allegati
- api_*.py         : superficie REST (FastAPI)
- seed.py          : dati iniziali (admin, medici, pazienti demo)
- cli.py           : simulazione applicativi esterni via CLI
"""
