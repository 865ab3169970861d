from app import app

# import all your models so Flask-Migrate sees them
from models import Bill, Item, Participant, ItemAssignment  # noqa: F401

if __name__ == "__main__":
    app.run(debug=True, host='0.0.0.0', port=5000)
