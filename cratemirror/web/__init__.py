"""只读 HTTP 服务"""
