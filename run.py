import os

from dotenv import load_dotenv

from failure_analytics import create_app

# Loads DATABASE_*, LOG_* and PORT from the .env file
load_dotenv()

app = create_app(os.environ.get('FLASK_CONFIG', 'default'))

if __name__ == "__main__":
    app.run(host="0.0.0.0", port=app.config['PORT'])
