#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import os
import sys
import atexit
import argparse
import logging
import traceback
from logging.handlers import TimedRotatingFileHandler

from flask import Flask, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from ythls.config import load_config
from ythls.resolver import get_format_resolver
from ythls.transcode import (
    FFmpegRunner,
    PlaylistGenerator,
    PreconvertConfig,
    PreconvertManager,
    SegmentSynthesizer,
    StreamConfig,
)
from ythls.transcode.api import register_routes

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)


def setup_logging(log_dir='logs'):
    """配置控制台日志和按日期滚动的文件日志"""
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)

    # 配置较少日志输出的模块
    for module in ['urllib3', 'requests', 'werkzeug']:
        logging.getLogger(module).setLevel(logging.WARNING)

    os.makedirs(log_dir, exist_ok=True)
    file_handler = TimedRotatingFileHandler(
        os.path.join(log_dir, 'ythls.log'),
        when='midnight',
        interval=1,
        backupCount=3  # 保留3天日志
    )
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    file_handler.setLevel(logging.INFO)
    logging.getLogger().addHandler(file_handler)


def create_app(config=None, *, client=None, transcoder=None):
    """创建 Flask 应用

    Args:
        config: 配置字典，None 时从配置文件加载
        client: 解析 API 客户端，None 时使用 VidflyClient
        transcoder: 切片转码器，None 时使用 FFmpegRunner

    Returns:
        Flask 应用实例
    """
    if config is None:
        config = load_config()

    app = Flask(__name__)
    CORS(app)  # Enable CORS

    resolver = get_format_resolver(config, client=client)
    stream_config = StreamConfig.from_app_config(config)
    ffmpeg_runner = FFmpegRunner(stream_config)
    synthesizer = SegmentSynthesizer(resolver, transcoder or ffmpeg_runner, stream_config)
    playlist_generator = PlaylistGenerator(stream_config.segment_duration)
    preconvert_manager = PreconvertManager(
        resolver, ffmpeg_runner, PreconvertConfig.from_app_config(config)
    )

    register_routes(app, resolver, synthesizer, playlist_generator, preconvert_manager)

    app.extensions['ythls'] = {
        'config': config,
        'resolver': resolver,
        'synthesizer': synthesizer,
        'playlist_generator': playlist_generator,
        'preconvert_manager': preconvert_manager,
    }

    @app.route('/health', methods=['GET'])
    def health():
        """健康检查"""
        return jsonify({
            "status": "ok",
            "cached_videos": len(resolver.cache),
            "active_jobs": preconvert_manager.get_active_count(),
        })

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({"error": error.description}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        logger.error(f"Unhandled error on {request.method} {request.path}: {error}")
        logger.error(traceback.format_exc())
        return jsonify({"error": "Internal server error"}), 500

    return app


def main(argv=None):
    parser = argparse.ArgumentParser(description='YouTube HLS streaming server')
    parser.add_argument('--config', help='配置文件路径 (默认 config/config.json)')
    parser.add_argument('--host', help='监听地址')
    parser.add_argument('--port', type=int, help='监听端口')
    args = parser.parse_args(argv)

    config = load_config(args.config)
    setup_logging(config.get('log_dir') or 'logs')

    app = create_app(config)
    atexit.register(app.extensions['ythls']['preconvert_manager'].stop_all)

    host = args.host or config.get('host') or '0.0.0.0'
    port = args.port or int(config.get('port') or 3000)
    logger.info(f"Server running on http://{host}:{port}")
    app.run(host=host, port=port, debug=False, threaded=True)
    return 0


# Start the server
if __name__ == '__main__':
    sys.exit(main())
