"""
Storage 子系统：表空间、虚拟区域划分、页面模型与缓冲池。

模块清单：
- tablespace_manager: 物理页文件管理
- memory_manager: 把表空间划分为独立增长的虚拟区域
- region_pager: 区域内分页
- page: 页面抽象
- btreepage: B+树内部/叶子页
- buffer: 缓冲池（LRU、脏页）
- cell: 持久化 u64 单元
"""
