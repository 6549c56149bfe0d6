"""
HLS 流 API 端点

播放列表由服务端动态生成，切片在请求时由 FFmpeg 生成并直接流式返回。
"""

import os
import re
import logging
from typing import Optional

from flask import Response, jsonify, request, send_from_directory

from ..errors import ConversionError, StreamError
from ..resolver.service import FormatResolver, validate_video_id
from .playlist import PlaylistGenerator
from .preconvert import PreconvertManager
from .synthesizer import SegmentJob, SegmentSynthesizer

logger = logging.getLogger(__name__)

PLAYLIST_MIMETYPE = 'application/vnd.apple.mpegurl'

VARIANT_PATTERN = re.compile(r'^(?P<quality>\w+)\.m3u8$')
SEGMENT_PATTERN = re.compile(r'^segment(?P<index>[^_]*)_(?P<quality>\w+)\.ts$')
AUDIO_SEGMENT_PATTERN = re.compile(r'^asegment(?P<index>.*)\.aac$')

HLS_FILE_MIMETYPES = {
    '.m3u8': PLAYLIST_MIMETYPE,
    '.ts': 'video/mp2t',
}

DEFAULT_CONVERT_QUALITY = '720p'


def _with_cors(response: Response) -> Response:
    response.headers['Access-Control-Allow-Origin'] = '*'
    return response


def _playlist_response(playlist: str) -> Response:
    return _with_cors(Response(playlist, mimetype=PLAYLIST_MIMETYPE))


def _segment_response(job: SegmentJob, mimetype: str) -> Response:
    """切片流式响应

    响应关闭时（包括生成器尚未开始迭代的情况）都会调用 job.close()。
    """
    response = Response(job.iter_bytes(), mimetype=mimetype)
    response.headers['Cache-Control'] = 'no-cache'
    response.call_on_close(job.close)
    return _with_cors(response)


def register_routes(
    app,
    resolver: FormatResolver,
    synthesizer: SegmentSynthesizer,
    playlist_generator: PlaylistGenerator,
    preconvert_manager: Optional[PreconvertManager] = None,
):
    """注册 HLS 流 API 路由

    Args:
        app: Flask 应用实例
        resolver: 格式解析服务
        synthesizer: 切片合成器
        playlist_generator: 播放列表生成器
        preconvert_manager: 预转码管理器，None 时不注册预转码路由
    """

    @app.errorhandler(StreamError)
    def handle_stream_error(error: StreamError):
        if error.status_code >= 500:
            logger.error(f"{request.method} {request.path} failed: {error}")
        else:
            logger.warning(f"{request.method} {request.path} rejected: {error}")
        return _with_cors(jsonify({"error": error.message})), error.status_code

    @app.route('/api/info/<video_id>', methods=['GET'])
    def api_video_info(video_id):
        """获取视频标题、封面和时长

        Args:
            video_id: YouTube 视频 ID

        Returns:
            {title, thumbnail, duration}
        """
        resolved = resolver.resolve(video_id)
        return _with_cors(jsonify(resolved.to_info()))

    @app.route('/stream/<video_id>/<resource>', methods=['GET'])
    def stream_resource(video_id, resource):
        """HLS 资源入口

        支持的资源：
        - master.m3u8                主播放列表
        - audio.m3u8                 纯音频播放列表
        - {quality}.m3u8             单清晰度播放列表
        - segment{N}_{quality}.ts    视频切片
        - asegment{N}.aac            音频切片

        Args:
            video_id: YouTube 视频 ID
            resource: 资源文件名
        """
        # 先校验 ID，非法 ID 不会触发任何上游请求
        validate_video_id(video_id)

        if resource == 'master.m3u8':
            resolved = resolver.resolve(video_id)
            return _playlist_response(playlist_generator.build_master_manifest(resolved))

        if resource == 'audio.m3u8':
            resolved = resolver.resolve(video_id)
            return _playlist_response(playlist_generator.build_audio_manifest(resolved))

        m = VARIANT_PATTERN.match(resource)
        if m:
            resolved = resolver.resolve(video_id)
            return _playlist_response(
                playlist_generator.build_variant_manifest(resolved, m.group('quality'))
            )

        m = SEGMENT_PATTERN.match(resource)
        if m:
            job = synthesizer.synthesize(video_id, m.group('index'), quality=m.group('quality'))
            return _segment_response(job, 'video/mp2t')

        m = AUDIO_SEGMENT_PATTERN.match(resource)
        if m:
            job = synthesizer.synthesize(video_id, m.group('index'), audio_only=True)
            return _segment_response(job, 'audio/aac')

        return _with_cors(jsonify({"error": f"Unknown stream resource: {resource}"})), 404

    if preconvert_manager is None:
        return

    @app.route('/api/convert', methods=['GET'])
    def api_convert_jobs():
        """获取所有预转码任务列表

        Returns:
            任务列表 JSON
        """
        return _with_cors(jsonify({
            "success": True,
            "jobs": preconvert_manager.get_all_jobs(),
            "active": preconvert_manager.get_active_count(),
        }))

    @app.route('/api/convert/<video_id>', methods=['POST'])
    def api_convert_start(video_id):
        """启动整片预转码

        请求体或查询参数：
        {
            "quality": "720p"
        }

        Returns:
            任务状态 JSON，新建任务返回 202
        """
        data = request.get_json(silent=True) or {}
        quality = data.get('quality') or request.args.get('quality') or DEFAULT_CONVERT_QUALITY

        job, created = preconvert_manager.start_job(video_id, quality)
        return _with_cors(jsonify({
            "success": True,
            "created": created,
            "job": job.to_dict(),
        })), 202 if created else 200

    @app.route('/api/convert/<video_id>', methods=['GET'])
    def api_convert_status(video_id):
        """获取预转码任务状态"""
        validate_video_id(video_id)
        quality = request.args.get('quality') or DEFAULT_CONVERT_QUALITY

        job = preconvert_manager.get_job(video_id, quality)
        if not job:
            raise ConversionError("Conversion job not found", status_code=404)
        return _with_cors(jsonify({"success": True, "job": job.to_dict()}))

    @app.route('/api/convert/<video_id>/stop', methods=['POST'])
    def api_convert_stop(video_id):
        """停止预转码任务"""
        validate_video_id(video_id)
        data = request.get_json(silent=True) or {}
        quality = data.get('quality') or request.args.get('quality') or DEFAULT_CONVERT_QUALITY

        if not preconvert_manager.stop_job(video_id, quality):
            raise ConversionError("Conversion job not found", status_code=404)
        job = preconvert_manager.get_job(video_id, quality)
        return _with_cors(jsonify({"success": True, "job": job.to_dict()}))

    @app.route('/hls/<video_id>/<quality>/<filename>', methods=['GET'])
    def hls_file(video_id, quality, filename):
        """返回预转码输出的播放列表或切片"""
        output_dir = preconvert_manager.resolve_output_file(video_id, quality, filename)
        if output_dir is None:
            raise ConversionError("File not available", status_code=404)

        mimetype = HLS_FILE_MIMETYPES.get(os.path.splitext(filename)[1].lower())
        if mimetype is None:
            raise ConversionError("File not available", status_code=404)
        return _with_cors(send_from_directory(os.path.abspath(output_dir), filename, mimetype=mimetype))
