"""
Flask extensions shared by the points wallet.
"""
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

# Ledger operations return ORM rows after their unit of work commits,
# so committed instances keep their loaded state.
db = SQLAlchemy(session_options={'expire_on_commit': False})

migrate = Migrate()
