from flask import Flask
from flask_cors import CORS

from danforouting.api import init_engine, routing_bp
from danforouting.config import config


def create_app(engine=None):
    """Create the Flask app; pass an engine to skip loading seed data"""
    app = Flask(__name__)
    CORS(app)
    init_engine(engine)
    app.register_blueprint(routing_bp)

    @app.route('/')
    def index():
        return "Danfo routing backend is running!"

    return app


if __name__ == '__main__':
    api_config = config.get_api_config()
    print(f"\n🚌 Danfo routing backend running at: http://{api_config['host']}:{api_config['port']}\n")
    create_app().run(**api_config)
