from extreg.business.extension import ExtensionBase
from extreg.business.hooks import implements


class Extension(ExtensionBase, ext_id="comment"):

    @classmethod
    @implements("node_view_alter")
    def node_view_alter(cls, build: dict, node: dict):
        build.setdefault("links", []).append("comment-add")

    @classmethod
    @implements("node_view_article_alter")
    def node_view_article_alter(cls, build: dict, node: dict):
        build["comments"] = []
