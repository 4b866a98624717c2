# punisher/app.py
import os
import logging

from flask import Flask, jsonify, request

from punisher.services.device_driver import DeviceDriver
from punisher.services.exceptions import InspectorUnavailable, InvalidConfiguration
from punisher.services.memory_inspector import MemoryInspector
from punisher.services.punishment_controller import PunishmentController
from punisher.services.settings import PunishmentSettings
from punisher.utils.shutdown_handler import ShutdownHandler


def create_app(controller):
    app = Flask(__name__)

    @app.route('/api/status')
    def status():
        return jsonify(controller.get_status())

    @app.route('/api/settings', methods=['GET'])
    def get_settings():
        return jsonify(controller.settings.to_dict())

    @app.route('/api/settings', methods=['PATCH', 'PUT'])
    def update_settings():
        """
        Accepts any subset of the settings fields.
        Rejected values leave every setting unchanged.
        """
        changes = request.get_json(silent=True)
        if not isinstance(changes, dict) or not changes:
            return jsonify({"error": "Expected a JSON object of settings."}), 400
        try:
            snapshot = controller.update_settings(changes)
        except InvalidConfiguration as e:
            return jsonify({"error": str(e), "field": e.field}), 400
        return jsonify(snapshot.to_dict())

    @app.route('/api/start', methods=['POST'])
    def start():
        try:
            started = controller.start()
        except InspectorUnavailable as e:
            return jsonify({"error": str(e)}), 503
        return jsonify({"started": started, "status": controller.get_status()})

    @app.route('/api/stop', methods=['POST'])
    def stop():
        controller.stop()
        return jsonify({"stopped": True, "status": controller.get_status()})

    @app.route('/api/punishment-log')
    def punishment_log():
        """
        Returns the history of recent punishments.
        """
        return jsonify(controller.get_punishment_log())

    return app


def build_controller(inspector=None):
    settings = PunishmentSettings.from_env()
    device = DeviceDriver()
    return PunishmentController(inspector or MemoryInspector(), device, settings=settings)


def main():
    logging.basicConfig(
        level=os.getenv("PUNISHER_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    controller = build_controller()

    shutdown_handler = ShutdownHandler()
    shutdown_handler.register(controller.device)
    shutdown_handler.register(controller)

    app = create_app(controller)
    app.run(
        debug=False,
        host=os.getenv("PUNISHER_HOST", "127.0.0.1"),
        port=int(os.getenv("PUNISHER_PORT", "5555")),
    )


if __name__ == '__main__':
    main()
